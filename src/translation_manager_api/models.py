from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# A single language's value for one key. bool is listed first so that JSON
# true/false never collapses into an int.
TranslationValue = Union[bool, int, float, str, None]

# language code -> value
TranslationEntry = Dict[str, TranslationValue]


class Space(BaseModel):
    """Container node of the translation tree.

    A space holds leaf translation entries and nested spaces. When ``is_array``
    is set, keys of both maps are positional indices ("0", "1", ...) and the
    space flattens to a list instead of an object.
    """

    model_config = ConfigDict(populate_by_name=True)

    translations: Dict[str, TranslationEntry] = Field(default_factory=dict)
    spaces: Dict[str, "Space"] = Field(default_factory=dict)
    is_array: bool = Field(default=False, alias="isArray")


def copy_space(space: Space) -> Space:
    """Deep copy of ``space`` built with an explicit stack."""
    def shallow(source: Space) -> Space:
        return Space(
            translations={key: dict(entry) for key, entry in source.translations.items()},
            is_array=source.is_array,
        )

    root = shallow(space)
    stack = [(space, root)]
    while stack:
        source, target = stack.pop()
        for key, child in source.spaces.items():
            clone = target.spaces[key] = shallow(child)
            stack.append((child, clone))
    return root


class TranslationDocument(BaseModel):
    # page key -> page root
    translations: Dict[str, Space] = Field(default_factory=dict)
    languages: List[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


def copy_document(document: TranslationDocument, **update: Any) -> TranslationDocument:
    fields = {
        "translations": {key: copy_space(page) for key, page in document.translations.items()},
        "languages": list(document.languages),
        "updated_at": document.updated_at,
    }
    fields.update(update)
    return TranslationDocument(**fields)


class Actor(BaseModel):
    user_id: str = "anonymous"
    user_email: str = "anonymous@unknown.com"
    user_name: Optional[str] = "Anonymous"


class FieldChange(BaseModel):
    field: str
    old_value: Any = None
    new_value: Any = None


ActivityAction = Literal["create", "update", "delete", "import", "export", "login", "logout"]
EntityType = Literal["translation", "page", "language", "space", "user"]


class ActivityLog(BaseModel):
    id: Optional[str] = None
    user_id: str
    user_email: str
    user_name: Optional[str] = None
    action: ActivityAction
    entity_type: EntityType
    entity_id: Optional[str] = None
    entity_name: Optional[str] = None
    details: Optional[str] = None
    changes: Optional[List[FieldChange]] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ImportIssue(BaseModel):
    path: str
    reason: str


class ImportReport(BaseModel):
    lang: str
    additions: List[str] = Field(default_factory=list)
    updates: List[str] = Field(default_factory=list)
    skipped: List[ImportIssue] = Field(default_factory=list)


class SearchHit(BaseModel):
    page_key: str
    path: List[str]
    key: str
    kind: Literal["page", "space", "translation"]


# Request bodies


class KeyCreate(BaseModel):
    key: str


class KeyRename(BaseModel):
    new_key: str


class SpaceCreate(BaseModel):
    path: List[str] = Field(default_factory=list)
    key: str
    is_array: bool = False


class ChildRename(BaseModel):
    path: List[str] = Field(default_factory=list)
    old_key: str
    new_key: str


class TranslationCreate(BaseModel):
    path: List[str] = Field(default_factory=list)
    key: str
    values: Optional[Dict[str, TranslationValue]] = None


class TranslationValueUpdate(BaseModel):
    path: List[str] = Field(default_factory=list)
    key: str
    lang: str
    value: TranslationValue = None


class OrderChange(BaseModel):
    path: List[str] = Field(default_factory=list)
    key: str
    new_index: int = Field(ge=0)


class ImportRequest(BaseModel):
    lang: str
    data: Dict[str, Any]
