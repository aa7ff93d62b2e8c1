import re
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import AlreadyExistsError, InvalidKeyError, InvalidOrderError, NotFoundError
from .models import SearchHit, Space, TranslationDocument, TranslationEntry, TranslationValue, copy_space

_WHITESPACE = re.compile(r"\s")


def is_valid_key(key) -> bool:
    """Return True if ``key`` can name a page, space, translation or language."""
    return isinstance(key, str) and key != "" and not _WHITESPACE.search(key)


def position_of(key: str) -> Optional[int]:
    # Positional keys of array-shaped spaces are plain decimal strings.
    if key.isascii() and key.isdigit():
        return int(key)
    return None


def _slot_of(key: str) -> Optional[int]:
    # "01" parses as 1 but never occupies slot 1.
    pos = position_of(key)
    return pos if pos is not None and str(pos) == key else None


def walk_spaces(pages: Dict[str, Space]) -> Iterator[Tuple[str, List[str], Space]]:
    """Yield ``(page_key, path, space)`` for every space in the tree, pages included."""
    stack = [(page_key, [], root) for page_key, root in reversed(list(pages.items()))]
    while stack:
        page_key, path, space = stack.pop()
        yield page_key, path, space
        for key, child in reversed(list(space.spaces.items())):
            stack.append((page_key, path + [key], child))


def _check_key(key: str, what: str) -> None:
    if not is_valid_key(key):
        raise InvalidKeyError(f"Invalid {what} key: {key!r}")


def _check_free(container: Space, key: str) -> None:
    # A key is either a space or a translation inside one container, never both.
    if key in container.spaces:
        raise AlreadyExistsError(f"Space key '{key}' already exists")
    if key in container.translations:
        raise AlreadyExistsError(f"Translation key '{key}' already exists")


class TranslationTree:
    """Pages of nested spaces plus the list of active languages.

    Every add and rename validates its input before touching the tree, so a
    failed call leaves the tree unchanged. Deletes of missing keys are no-ops.
    """

    def __init__(self, pages: Optional[Dict[str, Space]] = None, languages: Optional[List[str]] = None):
        self.pages: Dict[str, Space] = pages if pages is not None else {}
        self.languages: List[str] = languages if languages is not None else []

    @classmethod
    def from_document(cls, document: TranslationDocument) -> "TranslationTree":
        return cls(dict(document.translations), list(document.languages))

    def to_document(self) -> TranslationDocument:
        return TranslationDocument(
            translations={key: copy_space(page) for key, page in self.pages.items()},
            languages=list(self.languages),
        )

    def copy(self) -> "TranslationTree":
        return TranslationTree(
            {key: copy_space(page) for key, page in self.pages.items()},
            list(self.languages),
        )

    # Navigation

    def resolve_container(self, page_key: str, path: List[str]) -> Optional[Space]:
        current = self.pages.get(page_key)
        if current is None:
            return None
        for key in path:
            current = current.spaces.get(key)
            if current is None:
                return None
        return current

    def get_or_create_container(self, page_key: str, path: List[str]) -> Space:
        current = self.pages.get(page_key)
        if current is None:
            current = self.pages[page_key] = Space()
        for key in path:
            child = current.spaces.get(key)
            if child is None:
                child = current.spaces[key] = Space()
            current = child
        return current

    def _require_container(self, page_key: str, path: List[str], what: str = "Parent") -> Space:
        container = self.resolve_container(page_key, path)
        if container is None:
            raise NotFoundError(f"{what} not found: {'/'.join([page_key] + list(path))}")
        return container

    # Pages

    def add_page(self, page_key: str) -> Space:
        _check_key(page_key, "page")
        if page_key in self.pages:
            raise AlreadyExistsError(f"Page '{page_key}' already exists")
        page = self.pages[page_key] = Space()
        return page

    def delete_page(self, page_key: str) -> bool:
        return self.pages.pop(page_key, None) is not None

    def rename_page(self, old_key: str, new_key: str) -> None:
        _check_key(new_key, "page")
        if old_key == new_key:
            return
        if new_key in self.pages:
            raise AlreadyExistsError(f"Page '{new_key}' already exists")
        if old_key not in self.pages:
            raise NotFoundError(f"Page not found: {old_key}")
        self.pages[new_key] = self.pages.pop(old_key)

    # Spaces

    def add_space(self, page_key: str, parent_path: List[str], space_key: str, is_array: bool = False) -> Space:
        container = self._require_container(page_key, parent_path)
        _check_key(space_key, "space")
        _check_free(container, space_key)
        space = container.spaces[space_key] = Space(is_array=is_array)
        return space

    def delete_space(self, page_key: str, parent_path: List[str], space_key: str) -> bool:
        container = self.resolve_container(page_key, parent_path)
        if container is None:
            return False
        return container.spaces.pop(space_key, None) is not None

    def rename_space(self, page_key: str, parent_path: List[str], old_key: str, new_key: str) -> None:
        container = self._require_container(page_key, parent_path)
        if old_key == new_key:
            return
        _check_key(new_key, "space")
        if old_key not in container.spaces:
            raise NotFoundError(f"Space not found: {old_key}")
        _check_free(container, new_key)
        container.spaces[new_key] = container.spaces.pop(old_key)

    # Translations

    def add_translation(
        self,
        page_key: str,
        parent_path: List[str],
        key: str,
        values: Optional[Dict[str, TranslationValue]] = None,
    ) -> TranslationEntry:
        container = self._require_container(page_key, parent_path, "Space")
        _check_key(key, "translation")
        _check_free(container, key)
        values = values or {}
        entry = {lang: values[lang] if lang in values else "" for lang in self.languages}
        container.translations[key] = entry
        return entry

    def delete_translation(self, page_key: str, parent_path: List[str], key: str) -> bool:
        container = self.resolve_container(page_key, parent_path)
        if container is None:
            return False
        return container.translations.pop(key, None) is not None

    def rename_translation_key(self, page_key: str, parent_path: List[str], old_key: str, new_key: str) -> None:
        container = self._require_container(page_key, parent_path, "Space")
        if old_key == new_key:
            return
        _check_key(new_key, "translation")
        if old_key not in container.translations:
            raise NotFoundError(f"Translation key not found: {old_key}")
        _check_free(container, new_key)
        container.translations[new_key] = container.translations.pop(old_key)

    def get_translation(self, page_key: str, parent_path: List[str], key: str) -> Optional[TranslationEntry]:
        container = self.resolve_container(page_key, parent_path)
        if container is None:
            return None
        return container.translations.get(key)

    def update_translation_value(
        self, page_key: str, parent_path: List[str], key: str, lang: str, value: TranslationValue
    ) -> bool:
        entry = self.get_translation(page_key, parent_path, key)
        if entry is None:
            return False
        entry[lang] = value
        return True

    def change_order(self, page_key: str, parent_path: List[str], key: str, new_index: int) -> None:
        """Move the item at position ``key`` of an array space to ``new_index``.

        Items between the old and new positions shift by one. Gaps travel with
        their neighbours, so the sequence length never changes.
        """
        container = self._require_container(page_key, parent_path)
        if not container.is_array:
            raise InvalidOrderError("Order can only be changed inside an array space")
        old_index = _slot_of(key)
        if old_index is None or (key not in container.spaces and key not in container.translations):
            raise NotFoundError(f"Item not found at position {key!r}")

        positions = [_slot_of(k) for k in list(container.spaces) + list(container.translations)]
        length = max(p for p in positions if p is not None) + 1
        if new_index < 0 or new_index >= length:
            raise InvalidOrderError(f"Position {new_index} is out of range 0..{length - 1}")
        if new_index == old_index:
            return

        slots: List[Optional[Tuple[str, object]]] = [None] * length
        # non-positional keys keep their place after the sequence
        spaces: Dict[str, Space] = {}
        translations: Dict[str, TranslationEntry] = {}
        for k, child in container.spaces.items():
            pos = _slot_of(k)
            if pos is None:
                spaces[k] = child
            else:
                slots[pos] = ("space", child)
        for k, entry in container.translations.items():
            pos = _slot_of(k)
            if pos is None:
                translations[k] = entry
            else:
                slots[pos] = ("translation", entry)

        slots.insert(new_index, slots.pop(old_index))

        ordered_spaces: Dict[str, Space] = {}
        ordered_translations: Dict[str, TranslationEntry] = {}
        for index, slot in enumerate(slots):
            if slot is None:
                continue
            kind, item = slot
            if kind == "space":
                ordered_spaces[str(index)] = item
            else:
                ordered_translations[str(index)] = item
        ordered_spaces.update(spaces)
        ordered_translations.update(translations)
        container.spaces = ordered_spaces
        container.translations = ordered_translations

    # Languages

    def add_language(self, code: str) -> None:
        _check_key(code, "language")
        if code in self.languages:
            raise AlreadyExistsError(f"Language '{code}' already exists")
        self.languages.append(code)

    def delete_language(self, code: str) -> None:
        self.languages = [lang for lang in self.languages if lang != code]
        for _, _, space in walk_spaces(self.pages):
            for key in list(space.translations):
                entry = space.translations[key]
                entry.pop(code, None)
                if not entry:
                    del space.translations[key]

    def rename_language(self, old_code: str, new_code: str) -> None:
        _check_key(new_code, "language")
        if old_code == new_code:
            return
        if new_code in self.languages:
            raise AlreadyExistsError(f"Language '{new_code}' already exists")
        self.languages = [new_code if lang == old_code else lang for lang in self.languages]
        for _, _, space in walk_spaces(self.pages):
            for entry in space.translations.values():
                if old_code in entry:
                    entry[new_code] = entry.pop(old_code)

    # Search

    def search(self, query: str) -> List[SearchHit]:
        """Find pages, spaces and translations whose key or value contains ``query``."""
        needle = query.lower()
        if not needle:
            return []
        hits: List[SearchHit] = []
        for page_key, path, space in walk_spaces(self.pages):
            if not path and needle in page_key.lower():
                hits.append(SearchHit(page_key=page_key, path=[], key=page_key, kind="page"))
            elif path and needle in path[-1].lower():
                hits.append(SearchHit(page_key=page_key, path=path[:-1], key=path[-1], kind="space"))
            for key, entry in space.translations.items():
                values = (str(value or "") for value in entry.values())
                if needle in key.lower() or any(needle in value.lower() for value in values):
                    hits.append(SearchHit(page_key=page_key, path=path, key=key, kind="translation"))
        return hits
