import pytest

from translation_manager_api.errors import InvalidImportError, InvalidKeyError
from translation_manager_api.flatten import flatten_pages
from translation_manager_api.importer import default_for, import_translations, preview_import
from translation_manager_api.tree import TranslationTree


def test_import_array_into_empty_tree():
    tree = TranslationTree(languages=["tr"])
    import_translations(tree, "en", {"home": {"items": ["a", "b"]}})

    items = tree.pages["home"].spaces["items"]
    assert items.is_array
    assert items.translations == {"0": {"tr": "", "en": "a"}, "1": {"tr": "", "en": "b"}}
    assert tree.languages == ["tr", "en"]


def test_import_adds_language_before_filling_defaults(tree):
    import_translations(tree, "de", {"home": {"title": "Hallo"}})
    assert tree.languages == ["en", "tr", "de"]
    assert tree.pages["home"].translations["title"] == {"en": "", "tr": "", "de": "Hallo"}


@pytest.mark.parametrize(
    "value, default",
    [("text", ""), (7, 0), (2.5, 0), (True, False), (False, False), (None, None)],
)
def test_default_for_each_kind(value, default):
    result = default_for(value)
    assert result == default
    assert type(result) is type(default)


def test_new_entries_get_typed_defaults(tree):
    import_translations(tree, "en", {"settings": {"count": 3, "enabled": True, "empty": None, "label": "x"}})
    translations = tree.pages["settings"].translations
    assert translations["count"] == {"en": 3, "tr": 0}
    assert translations["enabled"] == {"en": True, "tr": False}
    assert translations["empty"] == {"en": None, "tr": None}
    assert translations["label"] == {"en": "x", "tr": ""}


def test_array_items_get_typed_defaults(tree):
    import_translations(tree, "en", {"home": {"flags": [True, 1]}})
    translations = tree.pages["home"].spaces["flags"].translations
    assert translations["0"]["tr"] is False
    assert translations["1"]["tr"] == 0


def test_existing_entries_only_change_target_language(home_tree):
    report = import_translations(home_tree, "tr", {"home": {"header": {"title": "Merhaba"}}})
    assert home_tree.pages["home"].spaces["header"].translations["title"] == {"en": "Hi", "tr": "Merhaba"}
    assert report.updates == ["home/header/title"]
    assert report.additions == []


def test_unchanged_values_are_not_reported(home_tree):
    report = import_translations(home_tree, "en", {"home": {"header": {"title": "Hi"}}})
    assert report.updates == []


def test_primitive_on_existing_space_is_skipped(home_tree):
    report = import_translations(home_tree, "en", {"home": {"header": "flat"}})
    assert "title" in home_tree.pages["home"].spaces["header"].translations
    assert "header" not in home_tree.pages["home"].translations
    assert [(issue.path, issue.reason) for issue in report.skipped] == [("home/header", "already a space")]


def test_object_on_existing_translation_is_skipped(home_tree):
    report = import_translations(home_tree, "en", {"home": {"header": {"title": {"main": "x"}}}})
    assert home_tree.pages["home"].spaces["header"].translations["title"] == {"en": "Hi", "tr": ""}
    assert home_tree.pages["home"].spaces["header"].spaces == {}
    assert report.skipped[0].reason == "already a translation"


def test_conflicts_inside_arrays_are_skipped(tree):
    import_translations(tree, "en", {"home": {"items": ["a", {"b": "c"}]}})
    report = import_translations(tree, "en", {"home": {"items": [{"x": "y"}, "flat"]}})
    items = tree.pages["home"].spaces["items"]
    assert items.translations["0"]["en"] == "a"
    assert items.spaces["1"].translations["b"]["en"] == "c"
    assert sorted(issue.path for issue in report.skipped) == ["home/items/0", "home/items/1"]


def test_existing_space_becomes_array(tree):
    tree.add_page("home")
    tree.add_space("home", [], "items")
    import_translations(tree, "en", {"home": {"items": ["a"]}})
    assert tree.pages["home"].spaces["items"].is_array


def test_nested_arrays_and_objects(tree):
    data = {"home": {"grid": [["a", "b"], {"label": "c"}]}}
    import_translations(tree, "en", data)
    grid = tree.pages["home"].spaces["grid"]
    assert grid.is_array
    assert grid.spaces["0"].is_array
    assert not grid.spaces["1"].is_array
    assert flatten_pages(tree.pages, "en") == data


def test_invalid_keys_are_skipped(tree):
    report = import_translations(tree, "en", {"bad page": {"a": "b"}, "home": {"ok": "1", "not ok": "2"}})
    assert list(tree.pages) == ["home"]
    assert list(tree.pages["home"].translations) == ["ok"]
    assert {issue.path for issue in report.skipped} == {"bad page", "home/not ok"}


def test_primitive_page_content_is_skipped(tree):
    report = import_translations(tree, "en", {"home": "text"})
    assert tree.pages == {}
    assert report.skipped[0].path == "home"


def test_import_validates_arguments(tree):
    with pytest.raises(InvalidKeyError):
        import_translations(tree, "e n", {})
    with pytest.raises(InvalidImportError):
        import_translations(tree, "en", ["not", "pages"])


def test_report_lists_additions_in_input_order(tree):
    report = import_translations(tree, "en", {"home": {"header": {"title": "Hi"}, "footer": "Bye"}})
    assert report.additions == ["home", "home/header", "home/footer", "home/header/title"]


def test_export_then_import_round_trip(home_tree):
    home_tree.add_space("home", [], "items", is_array=True)
    home_tree.add_translation("home", ["items"], "0", {"en": "first"})
    home_tree.add_translation("home", ["items"], "1", {"en": "second"})
    home_tree.add_space("home", ["items"], "2")
    home_tree.add_translation("home", ["items", "2"], "label", {"en": "third"})
    home_tree.update_translation_value("home", ["header"], "title", "en", "Hello")

    exported = flatten_pages(home_tree.pages, "en")
    fresh = TranslationTree(languages=["tr"])
    import_translations(fresh, "en", exported)
    assert flatten_pages(fresh.pages, "en") == exported

    import_translations(home_tree, "en", exported)
    assert flatten_pages(home_tree.pages, "en") == exported


def test_preview_does_not_mutate(home_tree):
    before = home_tree.to_document().model_dump()
    report = preview_import(home_tree, "de", {"home": {"header": {"title": "Hallo"}, "new": "x"}})
    assert home_tree.to_document().model_dump() == before
    assert report.updates == ["home/header/title"]
    assert report.additions == ["home/new"]
