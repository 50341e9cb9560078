"""Field descriptors for the generic record editor.

Create forms use the hand-maintained per-collection descriptors below. Edit
forms infer descriptors from the record being edited, so a column missing
here but present in the data only shows up when editing.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from shared.datastore import Collection

SYSTEM_FIELDS = ("id", "created_at", "updated_at")


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OTHER = "other"


class Control(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    TOGGLE = "toggle"
    SELECT = "select"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: FieldType
    required: bool = False


@dataclass
class Option:
    value: str
    label: str


@dataclass
class SelectSource:
    """Where a select control gets its options from."""

    placeholder: str
    options: Tuple[str, ...] = ()
    collection: Optional[Collection] = None  # options loaded as (id, name) pairs


class SpecialField(Enum):
    PRODUCT_CATEGORY = (Collection.PRODUCTS, "category_id")
    PRODUCT_DURATION = (Collection.PRODUCTS, "duration")
    PROFILE_ROLE = (Collection.PROFILES, "role")

    @property
    def collection(self) -> Collection:
        return self.value[0]

    @property
    def field_name(self) -> str:
        return self.value[1]

    @classmethod
    def lookup(cls, collection: Collection, name: str) -> Optional["SpecialField"]:
        return _SPECIAL_BY_KEY.get((collection, name))


_SPECIAL_BY_KEY = {member.value: member for member in SpecialField}

DURATIONS = ("1 Day", "2 Days", "7 Days", "14 Days", "30 Days")
ROLES = ("customer", "admin")

SELECT_SOURCES: Dict[SpecialField, SelectSource] = {
    SpecialField.PRODUCT_CATEGORY: SelectSource("Select a category", collection=Collection.CATEGORIES),
    SpecialField.PRODUCT_DURATION: SelectSource("Select duration", options=DURATIONS),
    SpecialField.PROFILE_ROLE: SelectSource("Select a role", options=ROLES),
}

DEFAULT_SCHEMAS: Dict[Collection, List[FieldSpec]] = {
    Collection.PRODUCTS: [
        FieldSpec("name", FieldType.STRING, required=True),
        FieldSpec("price", FieldType.NUMBER, required=True),
        FieldSpec("description", FieldType.STRING),
        FieldSpec("category_id", FieldType.STRING, required=True),
        FieldSpec("duration", FieldType.STRING, required=True),
        FieldSpec("is_popular", FieldType.BOOLEAN),
        FieldSpec("discount", FieldType.NUMBER),
        FieldSpec("image", FieldType.STRING),
    ],
    Collection.CATEGORIES: [
        FieldSpec("name", FieldType.STRING, required=True),
        FieldSpec("slug", FieldType.STRING, required=True),
        FieldSpec("image", FieldType.STRING),
    ],
    Collection.PROFILES: [
        FieldSpec("first_name", FieldType.STRING),
        FieldSpec("last_name", FieldType.STRING),
        FieldSpec("role", FieldType.STRING, required=True),
    ],
}


def value_type(value: Any) -> FieldType:
    # bool is checked first: it is a subclass of int
    if isinstance(value, bool):
        return FieldType.BOOLEAN
    if isinstance(value, (int, float)):
        return FieldType.NUMBER
    if isinstance(value, str):
        return FieldType.STRING
    return FieldType.OTHER


def infer_schema(record: Dict[str, Any]) -> List[FieldSpec]:
    return [
        FieldSpec(name, value_type(value))
        for name, value in record.items()
        if name not in SYSTEM_FIELDS
    ]


def schema_for(collection: Collection, record: Optional[Dict[str, Any]] = None) -> List[FieldSpec]:
    if record:
        return infer_schema(record)
    return list(DEFAULT_SCHEMAS.get(collection, []))


def control_for(collection: Collection, spec: FieldSpec) -> Control:
    if SpecialField.lookup(collection, spec.name) is not None:
        return Control.SELECT
    if spec.type == FieldType.BOOLEAN:
        return Control.TOGGLE
    if spec.name == "description":
        return Control.TEXTAREA
    if spec.type == FieldType.NUMBER:
        return Control.NUMBER
    return Control.TEXT


def label_for(name: str) -> str:
    # First underscore only; each word gets an upper-case initial
    words = name.replace("_", " ", 1).split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words)


@dataclass
class FormField:
    name: str
    label: str
    type: FieldType
    required: bool
    control: Control
    placeholder: str
    value: Any = None
    options: List[Option] = field(default_factory=list)
