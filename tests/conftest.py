import pytest

from translation_manager_api.tree import TranslationTree


@pytest.fixture
def tree():
    return TranslationTree(languages=["en", "tr"])


@pytest.fixture
def home_tree(tree):
    tree.add_page("home")
    tree.add_space("home", [], "header")
    tree.add_translation("home", ["header"], "title", {"en": "Hi"})
    return tree
