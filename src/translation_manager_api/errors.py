class TranslationTreeError(Exception):
    """Base class for errors raised by tree operations."""

    status_code = 400


class InvalidKeyError(TranslationTreeError, ValueError):
    status_code = 400


class AlreadyExistsError(TranslationTreeError):
    status_code = 409


class NotFoundError(TranslationTreeError, LookupError):
    status_code = 404


class InvalidOrderError(TranslationTreeError, ValueError):
    status_code = 400


class InvalidImportError(TranslationTreeError, ValueError):
    status_code = 400
