"""Typed associations between custom objects with endpoint integrity checks."""

from __future__ import annotations

import copy
from typing import Dict, List

from object_store import ObjectStore
from schema_errors import DuplicateError, NotFoundError, SchemaError, failure, success
from schema_types import Association


class AssociationGraph:
    def __init__(self, objects: ObjectStore) -> None:
        self._objects = objects
        self._associations: Dict[str, Association] = {}
        objects.add_reference_source(self.associations_for_object)

    def get_association(self, association_id: str) -> dict | None:
        assoc = self._associations.get(association_id)
        return assoc.to_dict() if assoc else None

    def list_associations(self) -> list[dict]:
        return [a.to_dict() for a in self._associations.values()]

    def associations_for_object(self, object_id: str) -> list[dict]:
        return [a.to_dict() for a in self._associations.values() if a.touches(object_id)]

    def association_count(self, object_id: str) -> int:
        return sum(1 for a in self._associations.values() if a.touches(object_id))

    def snapshot(self) -> Dict[str, Association]:
        return copy.deepcopy(self._associations)

    def restore(self, snapshot: Dict[str, Association]) -> None:
        self._associations = copy.deepcopy(snapshot)

    def _check(self, assoc: Association, current: Dict[str, Association]) -> None:
        for key, object_id in (("source_object_id", assoc.source_object_id), ("target_object_id", assoc.target_object_id)):
            if not self._objects.has_object(object_id):
                raise NotFoundError("OBJECT_NOT_FOUND", "association endpoint not found", key, {"object_id": object_id})
        if assoc.id in current:
            raise DuplicateError("ASSOCIATION_ID_TAKEN", "association id already in use", "id", {"id": assoc.id})
        # Pair is unordered: A->B and B->A with the same cardinality are the same link.
        for existing in current.values():
            if existing.endpoints() == assoc.endpoints() and existing.cardinality is assoc.cardinality:
                raise DuplicateError(
                    "ASSOCIATION_EXISTS",
                    "An association with this pair and cardinality already exists",
                    "cardinality",
                    {"association_id": existing.id},
                )

    def add_association(self, source_id: str, target_id: str, cardinality: str, label: str) -> dict:
        try:
            assoc = Association.from_dict(
                {
                    "source_object_id": source_id,
                    "target_object_id": target_id,
                    "cardinality": cardinality,
                    "label": label,
                }
            )
            self._check(assoc, self._associations)
        except SchemaError as exc:
            return failure(exc, "association")
        self._associations[assoc.id] = assoc
        return success("association", assoc.to_dict())

    def remove_association(self, association_id: str) -> dict:
        assoc = self._associations.get(association_id)
        if assoc is None:
            exc = NotFoundError("ASSOCIATION_NOT_FOUND", "association not found", "association_id", {"association_id": association_id})
            return failure(exc, "association")
        del self._associations[association_id]
        return success("association", assoc.to_dict())

    def load_associations(self, associations: List[Association]) -> None:
        """Replace the graph contents after checking every association."""
        staged: Dict[str, Association] = {}
        for assoc in associations:
            self._check(assoc, staged)
            staged[assoc.id] = copy.deepcopy(assoc)
        self._associations = staged
