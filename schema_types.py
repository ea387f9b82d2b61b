"""Structural types for the data model and the event catalog.

Every type is built through ``from_dict`` (or its constructor for catalog
constants) and validates its shape there; stores keep the validated
instances and hand out plain dict copies via ``to_dict``.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Tuple

from schema_errors import ValidationError


FIELD_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
MAX_LABEL_LEN = 200
MAX_DESCRIPTION_LEN = 1000
DEFAULT_ICON = "Database"


def new_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class EventCategory(str, Enum):
    EMAIL = "email"
    FORM = "form"
    PAGE = "page"
    CTA = "cta"
    MARKETING = "marketing"
    CUSTOM = "custom"


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    ENUM = "enum"
    REFERENCE = "reference"


class Cardinality(str, Enum):
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_MANY = "many-to-many"


def derive_api_name(label: str) -> str:
    """Lowercase ``label`` and collapse every non-alphanumeric run to ``_``."""
    base = re.sub(r"[^a-z0-9]+", "_", label.lower()).strip("_")
    if not base or base[0].isdigit():
        base = f"obj_{base}" if base else "obj"
    return base


def _require_str(data: dict, key: str, path: str, *, max_len: int | None = None, allow_empty: bool = False) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValidationError("TYPE_INVALID", f"{key} must be a string", f"{path}.{key}")
    value = value.strip()
    if not value and not allow_empty:
        raise ValidationError("VALUE_REQUIRED", f"{key} is required", f"{path}.{key}")
    if max_len is not None and len(value) > max_len:
        raise ValidationError("VALUE_TOO_LONG", f"{key} must be at most {max_len} characters", f"{path}.{key}")
    return value


def _optional_str(data: dict, key: str, path: str, default: str = "", *, max_len: int | None = None) -> str:
    if data.get(key) is None:
        return default
    return _require_str(data, key, path, max_len=max_len, allow_empty=True)


def _coerce_enum(enum_cls, value: Any, path: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError("ENUM_INVALID", f"must be one of: {allowed}", path, {"value": value}) from None


def _parse_options(raw: Any, field_type: FieldType, path: str) -> Tuple[str, ...]:
    if raw is None:
        raw = []
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("TYPE_INVALID", "options must be a list", f"{path}.options")
    options: List[str] = []
    for idx, opt in enumerate(raw):
        # Options may also arrive as {label, value} objects.
        if isinstance(opt, dict):
            opt = opt.get("value")
        if not isinstance(opt, str) or not opt.strip():
            raise ValidationError("OPTION_INVALID", "option must be a non-empty string", f"{path}.options[{idx}]")
        options.append(opt.strip())
    if field_type is FieldType.ENUM:
        if not options:
            raise ValidationError("OPTIONS_REQUIRED", "enum fields need at least one option", f"{path}.options")
        if len(set(options)) != len(options):
            raise ValidationError("OPTIONS_DUPLICATE", "enum options must be distinct", f"{path}.options")
    elif options:
        raise ValidationError("OPTIONS_UNEXPECTED", "only enum fields take options", f"{path}.options")
    return tuple(options)


def _field_core(data: Any, path: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError("TYPE_INVALID", "field must be an object", path)
    name = _require_str(data, "name", path, max_len=100)
    if not FIELD_NAME_RE.match(name):
        raise ValidationError(
            "FIELD_NAME_INVALID",
            "Field name must start with a letter and contain only letters, numbers, and underscores",
            f"{path}.name",
        )
    field_type = _coerce_enum(FieldType, data.get("type"), f"{path}.type")
    required = data.get("required", False)
    if not isinstance(required, bool):
        raise ValidationError("TYPE_INVALID", "required must be a boolean", f"{path}.required")
    return {
        "name": name,
        "type": field_type,
        "required": required,
        "options": _parse_options(data.get("options"), field_type, path),
        "label": _optional_str(data, "label", path, name, max_len=MAX_LABEL_LEN) or name,
        "description": _optional_str(data, "description", path, max_len=500),
    }


@dataclass(frozen=True)
class FieldBlueprint:
    id: str
    name: str
    type: FieldType
    required: bool = False
    options: Tuple[str, ...] = ()
    label: str = ""
    description: str = ""

    def to_field_input(self) -> dict:
        return {
            "name": self.name,
            "type": self.type.value,
            "required": self.required,
            "options": list(self.options),
            "label": self.label or self.name,
            "description": self.description,
        }


@dataclass(frozen=True)
class Template:
    id: str
    name: str
    label: str
    description: str
    icon: str
    category: str
    fields: Tuple[FieldBlueprint, ...]
    tags: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "label": self.label,
            "description": self.description,
            "icon": self.icon,
            "category": self.category,
            "tags": list(self.tags),
            "fields": [{"id": bp.id, **bp.to_field_input()} for bp in self.fields],
        }


@dataclass(frozen=True)
class HubSpotEvent:
    id: str
    name: str
    category: EventCategory
    description: str
    event_type_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "event_type_id": self.event_type_id,
            "description": self.description,
        }


@dataclass
class Field:
    id: str
    name: str
    type: FieldType
    required: bool = False
    options: Tuple[str, ...] = ()
    label: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, data: Any, path: str = "field", *, keep_id: bool = True) -> "Field":
        core = _field_core(data, path)
        field_id = data.get("id") if keep_id else None
        if field_id is not None and (not isinstance(field_id, str) or not field_id.strip()):
            raise ValidationError("TYPE_INVALID", "id must be a non-empty string", f"{path}.id")
        return cls(id=field_id or new_id(), **core)

    def patched(self, patch: dict, path: str = "field") -> "Field":
        merged = {**self.to_dict(), **patch, "id": self.id}
        # Changing away from enum drops the old options unless new ones are given.
        if "type" in patch and patch["type"] != FieldType.ENUM.value and "options" not in patch:
            merged["options"] = []
        return Field.from_dict(merged, path)

    def copy_with_new_id(self) -> "Field":
        return replace(self, id=new_id())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "required": self.required,
            "options": list(self.options),
            "label": self.label,
            "description": self.description,
        }


def _check_field_names(fields: List[Field], path: str) -> None:
    seen_names: set[str] = set()
    seen_ids: set[str] = set()
    for idx, fld in enumerate(fields):
        key = fld.name.lower()
        if key in seen_names:
            raise ValidationError("FIELD_NAME_DUPLICATE", f"field name '{fld.name}' is already used", f"{path}[{idx}].name")
        if fld.id in seen_ids:
            raise ValidationError("FIELD_ID_DUPLICATE", f"field id '{fld.id}' is already used", f"{path}[{idx}].id")
        seen_names.add(key)
        seen_ids.add(fld.id)


def parse_fields(raw: Any, path: str = "fields", *, keep_ids: bool = True) -> List[Field]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("TYPE_INVALID", "fields must be a list", path)
    fields = [Field.from_dict(item, f"{path}[{idx}]", keep_id=keep_ids) for idx, item in enumerate(raw)]
    _check_field_names(fields, path)
    return fields


@dataclass
class CustomObject:
    id: str
    label: str
    api_name: str
    fields: List[Field] = field(default_factory=list)
    description: str = ""
    icon: str = DEFAULT_ICON
    is_template: bool = False
    template_id: str | None = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Any, path: str = "object") -> "CustomObject":
        """Rebuild a stored object (ids, api_name and timestamps included)."""
        if not isinstance(data, dict):
            raise ValidationError("TYPE_INVALID", "object must be a dict", path)
        obj_id = _require_str(data, "id", path)
        label = _require_str(data, "label", path, max_len=MAX_LABEL_LEN)
        api_name = data.get("api_name") or derive_api_name(label)
        if not isinstance(api_name, str) or not re.match(r"^[a-z][a-z0-9_]*$", api_name):
            raise ValidationError("API_NAME_INVALID", "api_name must be lowercase snake case", f"{path}.api_name")
        template_id = data.get("template_id")
        if template_id is not None and not isinstance(template_id, str):
            raise ValidationError("TYPE_INVALID", "template_id must be a string", f"{path}.template_id")
        stamp = now_iso()
        return cls(
            id=obj_id,
            label=label,
            api_name=api_name,
            fields=parse_fields(data.get("fields"), f"{path}.fields"),
            description=_optional_str(data, "description", path, max_len=MAX_DESCRIPTION_LEN),
            icon=_optional_str(data, "icon", path, DEFAULT_ICON) or DEFAULT_ICON,
            is_template=bool(data.get("is_template", False)),
            template_id=template_id,
            created_at=data.get("created_at") or stamp,
            updated_at=data.get("updated_at") or stamp,
        )

    def field_by_id(self, field_id: str) -> Field | None:
        for fld in self.fields:
            if fld.id == field_id:
                return fld
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "api_name": self.api_name,
            "description": self.description,
            "icon": self.icon,
            "fields": [f.to_dict() for f in self.fields],
            "is_template": self.is_template,
            "template_id": self.template_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Association:
    id: str
    source_object_id: str
    target_object_id: str
    cardinality: Cardinality
    label: str
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: Any, path: str = "association") -> "Association":
        if not isinstance(data, dict):
            raise ValidationError("TYPE_INVALID", "association must be a dict", path)
        assoc_id = data.get("id")
        if assoc_id is not None and (not isinstance(assoc_id, str) or not assoc_id.strip()):
            raise ValidationError("TYPE_INVALID", "id must be a non-empty string", f"{path}.id")
        return cls(
            id=assoc_id or new_id(),
            source_object_id=_require_str(data, "source_object_id", path),
            target_object_id=_require_str(data, "target_object_id", path),
            cardinality=_coerce_enum(Cardinality, data.get("cardinality"), f"{path}.cardinality"),
            label=_require_str(data, "label", path, max_len=MAX_LABEL_LEN),
            created_at=data.get("created_at") or now_iso(),
        )

    def endpoints(self) -> frozenset:
        return frozenset((self.source_object_id, self.target_object_id))

    def touches(self, object_id: str) -> bool:
        return object_id in (self.source_object_id, self.target_object_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_object_id": self.source_object_id,
            "target_object_id": self.target_object_id,
            "cardinality": self.cardinality.value,
            "label": self.label,
            "created_at": self.created_at,
        }
