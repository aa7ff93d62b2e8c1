import logging
from typing import Any, List, Tuple

from .errors import InvalidImportError, InvalidKeyError
from .models import ImportIssue, ImportReport, Space, TranslationValue
from .tree import TranslationTree, is_valid_key

logger = logging.getLogger(__name__)


def is_primitive(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def default_for(value: TranslationValue) -> TranslationValue:
    """Zero value of the same kind, used for languages missing from an import."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return 0
    if value is None:
        return None
    return ""


def same_value(old: Any, new: Any) -> bool:
    return type(old) is type(new) and old == new


def _skip(report: ImportReport, path: List[str], reason: str) -> None:
    where = "/".join(path)
    logger.warning("Skipping '%s' while importing %s: %s", where, report.lang, reason)
    report.skipped.append(ImportIssue(path=where, reason=reason))


def import_translations(tree: TranslationTree, lang: str, data: Any) -> ImportReport:
    """Merge ``data`` (``{page_key: json}``) into ``tree`` as values for ``lang``.

    The shape of every node is taken from the incoming JSON: primitives become
    translation entries, objects become spaces and lists become array spaces.
    A key that already exists with the other kind is skipped and reported
    instead of being overwritten. Import is best-effort, invalid keys are
    skipped as well.
    """
    if not is_valid_key(lang):
        raise InvalidKeyError(f"Invalid language code: {lang!r}")
    if not isinstance(data, dict):
        raise InvalidImportError("Import data must be an object keyed by page")

    if lang not in tree.languages:
        tree.add_language(lang)

    report = ImportReport(lang=lang)
    stack: List[Tuple[List[str], Space, Any]] = []
    pages = []
    for page_key, value in data.items():
        if not is_valid_key(page_key):
            _skip(report, [str(page_key)], "invalid page key")
            continue
        if not isinstance(value, (dict, list)):
            _skip(report, [page_key], "page content must be an object or an array")
            continue
        if page_key not in tree.pages:
            report.additions.append(page_key)
        pages.append(([page_key], tree.get_or_create_container(page_key, []), value))
    stack.extend(reversed(pages))

    while stack:
        where, container, obj = stack.pop()
        if isinstance(obj, list):
            items = [(str(index), item) for index, item in enumerate(obj)]
        else:
            items = list(obj.items())

        children = []
        for key, value in items:
            here = where + [key]
            if not is_valid_key(key):
                _skip(report, here, "invalid key")
                continue

            if is_primitive(value):
                if key in container.spaces:
                    _skip(report, here, "already a space")
                    continue
                entry = container.translations.get(key)
                if entry is None:
                    container.translations[key] = {
                        code: value if code == lang else default_for(value) for code in tree.languages
                    }
                    report.additions.append("/".join(here))
                else:
                    if lang not in entry or not same_value(entry[lang], value):
                        report.updates.append("/".join(here))
                    entry[lang] = value

            elif isinstance(value, (dict, list)):
                if key in container.translations:
                    _skip(report, here, "already a translation")
                    continue
                is_array = isinstance(value, list)
                child = container.spaces.get(key)
                if child is None:
                    child = container.spaces[key] = Space(is_array=is_array)
                    report.additions.append("/".join(here))
                elif is_array:
                    child.is_array = True
                children.append((here, child, value))

        stack.extend(reversed(children))

    logger.info(
        "Imported %s: %d added, %d updated, %d skipped",
        lang,
        len(report.additions),
        len(report.updates),
        len(report.skipped),
    )
    return report


def preview_import(tree: TranslationTree, lang: str, data: Any) -> ImportReport:
    """Report what ``import_translations`` would change, without changing ``tree``."""
    return import_translations(tree.copy(), lang, data)
