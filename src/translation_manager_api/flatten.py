from typing import Any, Dict, List, Union

from .models import Space, TranslationEntry
from .tree import position_of

JSONValue = Union[Dict[str, Any], List[Any], str, int, float, bool, None]


def read_value(entry: TranslationEntry, lang: str) -> Any:
    # Missing and falsy values (0, False, None) all export as "". Existing
    # exported JSON depends on this, keep it.
    return entry.get(lang) or ""


def _shell(space: Space) -> Union[Dict[str, Any], List[Any]]:
    if not space.is_array:
        return {}
    positions = [position_of(key) for key in list(space.spaces) + list(space.translations)]
    positions = [p for p in positions if p is not None]
    if not positions:
        return []
    return [None] * (max(positions) + 1)


def flatten(container: Space, lang: str) -> JSONValue:
    """Materialize ``container`` as plain JSON for one language.

    Map spaces become objects (child spaces first, then translations). Array
    spaces become lists sized by their highest positional key, with unused
    positions left as ``None``.
    """
    root = _shell(container)
    stack = [(container, root)]
    while stack:
        space, out = stack.pop()
        if space.is_array:
            for index in range(len(out)):
                key = str(index)
                child = space.spaces.get(key)
                if child is not None:
                    out[index] = _shell(child)
                    stack.append((child, out[index]))
                elif key in space.translations:
                    out[index] = read_value(space.translations[key], lang)
            continue
        for key, child in space.spaces.items():
            out[key] = _shell(child)
            stack.append((child, out[key]))
        for key, entry in space.translations.items():
            out[key] = read_value(entry, lang)
    return root


def flatten_pages(pages: Dict[str, Space], lang: str) -> Dict[str, JSONValue]:
    return {page_key: flatten(page, lang) for page_key, page in pages.items()}


def flatten_all_languages(pages: Dict[str, Space], languages: List[str]) -> Dict[str, Dict[str, JSONValue]]:
    return {lang: flatten_pages(pages, lang) for lang in languages}
