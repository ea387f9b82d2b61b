"""In-memory custom object store with template instantiation and duplication."""

from __future__ import annotations

import copy
from typing import Any, Callable, Dict, List

from schema_errors import (
    NotFoundError,
    ReferentialIntegrityError,
    SchemaError,
    ValidationError,
    failure,
    success,
)
from schema_types import CustomObject, Field, derive_api_name, new_id, now_iso, parse_fields
from template_catalog import get_template


ReferenceSource = Callable[[str], List[dict]]

COPY_LABEL_SUFFIX = " (Copy)"
COPY_API_SUFFIX = "_copy"
_PATCHABLE = {"label", "description", "icon", "fields"}


class ObjectStore:
    def __init__(self) -> None:
        self._objects: Dict[str, CustomObject] = {}
        self._reference_sources: List[ReferenceSource] = []
        # api_names held by objects whose removal is not yet confirmed.
        self._reserved: Dict[str, str] = {}

    def add_reference_source(self, source: ReferenceSource) -> None:
        """Register a callable listing the records that reference an object id."""
        self._reference_sources.append(source)

    # reads

    def get_object(self, object_id: str) -> dict | None:
        obj = self._objects.get(object_id)
        return obj.to_dict() if obj else None

    def list_objects(self) -> list[dict]:
        return [obj.to_dict() for obj in self._objects.values()]

    def has_object(self, object_id: str) -> bool:
        return object_id in self._objects

    def find_by_api_name(self, api_name: str) -> dict | None:
        key = (api_name or "").lower()
        for obj in self._objects.values():
            if obj.api_name.lower() == key:
                return obj.to_dict()
        return None

    def snapshot(self) -> Dict[str, CustomObject]:
        return copy.deepcopy(self._objects)

    def restore(self, snapshot: Dict[str, CustomObject]) -> None:
        self._objects = copy.deepcopy(snapshot)

    # helpers

    def _require(self, object_id: str) -> CustomObject:
        obj = self._objects.get(object_id)
        if obj is None:
            raise NotFoundError("OBJECT_NOT_FOUND", "object not found", "object_id", {"object_id": object_id})
        return obj

    def _api_name_taken(self, api_name: str, exclude_id: str | None = None) -> bool:
        key = api_name.lower()
        if any(name == key and owner != exclude_id for owner, name in self._reserved.items()):
            return True
        return any(obj.api_name.lower() == key and obj.id != exclude_id for obj in self._objects.values())

    def reserve_api_name(self, object_id: str, api_name: str) -> None:
        """Keep ``api_name`` taken while ``object_id`` is out of the store."""
        self._reserved[object_id] = api_name.lower()

    def release_api_name(self, object_id: str) -> None:
        self._reserved.pop(object_id, None)

    def _unique_copy_api_name(self, api_name: str) -> str:
        candidate = f"{api_name}{COPY_API_SUFFIX}"
        n = 2
        while self._api_name_taken(candidate):
            candidate = f"{api_name}{COPY_API_SUFFIX}_{n}"
            n += 1
        return candidate

    def _build(self, data: Any, *, template_id: str | None = None) -> CustomObject:
        if not isinstance(data, dict):
            raise ValidationError("TYPE_INVALID", "object input must be a dict", "object")
        label = data.get("label")
        if not isinstance(label, str) or not label.strip():
            raise ValidationError("VALUE_REQUIRED", "Display label is required", "label")
        api_name = derive_api_name(label)
        if self._api_name_taken(api_name):
            raise ValidationError(
                "API_NAME_TAKEN",
                "An object with this name already exists",
                "label",
                {"api_name": api_name},
            )
        stamp = now_iso()
        return CustomObject.from_dict(
            {
                "id": new_id(),
                "label": label,
                "api_name": api_name,
                "description": data.get("description"),
                "icon": data.get("icon"),
                # Fresh field ids: caller-supplied ids are never trusted on create.
                "fields": [f.to_dict() for f in parse_fields(data.get("fields"), keep_ids=False)],
                "is_template": template_id is not None,
                "template_id": template_id,
                "created_at": stamp,
                "updated_at": stamp,
            }
        )

    # object mutations

    def create_object(self, data: dict) -> dict:
        try:
            obj = self._build(data)
        except SchemaError as exc:
            return failure(exc, "object")
        self._objects[obj.id] = obj
        return success("object", obj.to_dict())

    def create_from_template(self, template_id: str, overrides: dict | None = None) -> dict:
        template = get_template(template_id)
        if template is None:
            exc = NotFoundError("TEMPLATE_NOT_FOUND", "template not found", "template_id", {"template_id": template_id})
            return failure(exc, "object")
        overrides = overrides or {}
        data = {
            "label": overrides.get("label") or template.label,
            "description": overrides.get("description", template.description),
            "icon": overrides.get("icon") or template.icon,
            "fields": [bp.to_field_input() for bp in template.fields],
        }
        try:
            obj = self._build(data, template_id=template.id)
        except SchemaError as exc:
            return failure(exc, "object")
        self._objects[obj.id] = obj
        return success("object", obj.to_dict())

    def update_object(self, object_id: str, patch: dict) -> dict:
        try:
            obj = self._require(object_id)
            if not isinstance(patch, dict):
                raise ValidationError("TYPE_INVALID", "patch must be a dict", "patch")
            unknown = sorted(set(patch) - _PATCHABLE)
            if unknown:
                raise ValidationError("PATCH_FIELD_UNKNOWN", f"cannot patch: {', '.join(unknown)}", "patch", {"keys": unknown})
            merged = obj.to_dict()
            if "label" in patch:
                label = patch["label"]
                if not isinstance(label, str) or not label.strip():
                    raise ValidationError("VALUE_REQUIRED", "Display label is required", "label")
                api_name = derive_api_name(label)
                if self._api_name_taken(api_name, exclude_id=object_id):
                    raise ValidationError("API_NAME_TAKEN", "An object with this name already exists", "label", {"api_name": api_name})
                merged["label"] = label
                merged["api_name"] = api_name
            for key in ("description", "icon"):
                if key in patch:
                    merged[key] = patch[key]
            if "fields" in patch:
                merged["fields"] = patch["fields"]
            merged["updated_at"] = now_iso()
            updated = CustomObject.from_dict(merged)
        except SchemaError as exc:
            return failure(exc, "object")
        self._objects[object_id] = updated
        return success("object", updated.to_dict())

    def duplicate_object(self, object_id: str) -> dict:
        """Copy an object locally: new ids everywhere, label and api_name suffixed."""
        try:
            source = self._require(object_id)
        except SchemaError as exc:
            return failure(exc, "object")
        stamp = now_iso()
        dup = copy.deepcopy(source)
        dup.id = new_id()
        dup.label = f"{source.label}{COPY_LABEL_SUFFIX}"
        dup.api_name = self._unique_copy_api_name(source.api_name)
        dup.fields = [fld.copy_with_new_id() for fld in source.fields]
        dup.created_at = stamp
        dup.updated_at = stamp
        self._objects[dup.id] = dup
        return success("object", dup.to_dict())

    def references_to(self, object_id: str) -> list[dict]:
        refs: list[dict] = []
        for source in self._reference_sources:
            refs.extend(source(object_id))
        return refs

    def delete_object(self, object_id: str) -> dict:
        try:
            obj = self._require(object_id)
            refs = self.references_to(object_id)
            if refs:
                raise ReferentialIntegrityError(
                    "OBJECT_HAS_ASSOCIATIONS",
                    f"Object is referenced by {len(refs)} association{'s' if len(refs) != 1 else ''}; remove them first",
                    "object_id",
                    {"associations": [{"id": r.get("id"), "label": r.get("label")} for r in refs]},
                )
        except SchemaError as exc:
            return failure(exc, "object")
        del self._objects[object_id]
        return success("object", obj.to_dict())

    def replace_object(self, object_id: str, data: dict) -> dict:
        """Swap a stored object for a reconciled copy, possibly under a new id."""
        try:
            self._require(object_id)
            obj = CustomObject.from_dict(data)
            if obj.id != object_id and obj.id in self._objects:
                raise ValidationError("OBJECT_ID_TAKEN", "object id already in use", "id", {"id": obj.id})
            if self._api_name_taken(obj.api_name, exclude_id=object_id):
                raise ValidationError("API_NAME_TAKEN", "An object with this name already exists", "api_name", {"api_name": obj.api_name})
        except SchemaError as exc:
            return failure(exc, "object")
        rebuilt: Dict[str, CustomObject] = {}
        for key, value in self._objects.items():
            if key == object_id:
                rebuilt[obj.id] = obj
            else:
                rebuilt[key] = value
        self._objects = rebuilt
        return success("object", obj.to_dict())

    def load_objects(self, objects: List[CustomObject]) -> None:
        """Replace the store contents; raises ValidationError on clashing ids or api names."""
        staged: Dict[str, CustomObject] = {}
        api_names: set[str] = set()
        for idx, obj in enumerate(objects):
            if obj.id in staged:
                raise ValidationError("OBJECT_ID_TAKEN", "object id already in use", f"objects[{idx}].id", {"id": obj.id})
            if obj.api_name.lower() in api_names:
                raise ValidationError("API_NAME_TAKEN", "An object with this name already exists", f"objects[{idx}].api_name", {"api_name": obj.api_name})
            api_names.add(obj.api_name.lower())
            staged[obj.id] = copy.deepcopy(obj)
        self._objects = staged

    def position_of(self, object_id: str) -> int | None:
        for idx, key in enumerate(self._objects):
            if key == object_id:
                return idx
        return None

    def discard(self, object_id: str) -> None:
        """Drop an object without integrity checks; used to undo optimistic inserts."""
        self._objects.pop(object_id, None)

    def reinstate(self, data: dict, position: int | None = None) -> None:
        """Put a previously removed object back at its old position."""
        obj = CustomObject.from_dict(data)
        items = [(k, v) for k, v in self._objects.items() if k != obj.id]
        if position is None or position > len(items):
            position = len(items)
        items.insert(position, (obj.id, obj))
        self._objects = dict(items)

    # field mutations

    def add_field(self, object_id: str, data: dict) -> dict:
        try:
            obj = self._require(object_id)
            new_field = Field.from_dict(data, "field", keep_id=False)
            fields = [*obj.fields, new_field]
            parse_fields([f.to_dict() for f in fields])
        except SchemaError as exc:
            return failure(exc, "field")
        obj.fields = fields
        obj.updated_at = now_iso()
        return success("field", new_field.to_dict())

    def update_field(self, object_id: str, field_id: str, patch: dict) -> dict:
        try:
            obj = self._require(object_id)
            current = obj.field_by_id(field_id)
            if current is None:
                raise NotFoundError("FIELD_NOT_FOUND", "field not found", "field_id", {"field_id": field_id})
            if not isinstance(patch, dict):
                raise ValidationError("TYPE_INVALID", "patch must be a dict", "patch")
            updated = current.patched(patch)
            fields = [updated if f.id == field_id else f for f in obj.fields]
            parse_fields([f.to_dict() for f in fields])
        except SchemaError as exc:
            return failure(exc, "field")
        obj.fields = fields
        obj.updated_at = now_iso()
        return success("field", updated.to_dict())

    def remove_field(self, object_id: str, field_id: str) -> dict:
        try:
            obj = self._require(object_id)
            target = obj.field_by_id(field_id)
            if target is None:
                raise NotFoundError("FIELD_NOT_FOUND", "field not found", "field_id", {"field_id": field_id})
        except SchemaError as exc:
            return failure(exc, "field")
        obj.fields = [f for f in obj.fields if f.id != field_id]
        obj.updated_at = now_iso()
        return success("field", target.to_dict())
