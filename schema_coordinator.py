"""Coordinates data model mutations across objects and associations.

Synchronous mutations go straight to the stores. Duplicate and delete are
applied optimistically, then confirmed by the persistence collaborator; a
failed confirmation puts the touched objects back exactly as they were.

While a duplicate or delete is in flight its object ids are ``PENDING`` and
every other mutation on them fails fast with ``BusyError``. The collaborator
call runs in its own task, so a caller that stops waiting (cancellation)
does not leave the ids pending: the task still settles them to
``COMMITTED`` or ``ROLLED_BACK``.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Protocol, Tuple

from association_graph import AssociationGraph
from object_store import ObjectStore
from schema_errors import (
    BusyError,
    Issue,
    NotFoundError,
    PersistenceError,
    ReferentialIntegrityError,
    SchemaError,
    ValidationError,
    failure,
    success,
)
from schema_types import Association, CustomObject
from strategist.schema_hash import schema_hash


logger = logging.getLogger("strategist.schema")

EXPORT_VERSION = "1"


class MutationState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class SchemaPersistence(Protocol):
    async def duplicate_custom_object(self, object_id: str) -> dict: ...

    async def delete_custom_object(self, object_id: str) -> dict: ...

    async def load_data_model(self) -> dict: ...

    async def save_data_model(self, export: dict) -> dict: ...


Finalize = Callable[[dict], dict]


def _async_failure(exc: SchemaError) -> dict:
    result = failure(exc)
    result["data"] = None
    result["error"] = result["errors"][0]["message"]
    return result


def _normalize_response(response: Any) -> dict:
    """Collaborator replies must carry exactly one of ``data`` / ``error``."""
    if not isinstance(response, dict):
        return {"data": None, "error": "persistence returned a malformed response"}
    data = response.get("data")
    error = response.get("error")
    if error is not None:
        return {"data": None, "error": str(error) or "persistence failed"}
    if not isinstance(data, dict):
        return {"data": None, "error": "persistence returned no data"}
    return {"data": data, "error": None}


class SchemaMutationCoordinator:
    def __init__(
        self,
        persistence: SchemaPersistence | None = None,
        objects: ObjectStore | None = None,
        associations: AssociationGraph | None = None,
    ) -> None:
        self.persistence = persistence
        self.objects = objects or ObjectStore()
        self.associations = associations or AssociationGraph(self.objects)
        self._states: Dict[str, MutationState] = {}
        self._inflight: Dict[Tuple[str, ...], asyncio.Future] = {}
        self._save_deferred = False

    # state machine

    def mutation_state(self, object_id: str) -> MutationState:
        return self._states.get(object_id, MutationState.IDLE)

    def pending_ids(self) -> list[str]:
        return [key for key, state in self._states.items() if state is MutationState.PENDING]

    def _guard(self, *ids: str | None) -> None:
        busy = [i for i in ids if i and self.mutation_state(i) is MutationState.PENDING]
        if busy:
            logger.info("mutation_busy ids=%s", busy)
            raise BusyError(
                "MUTATION_PENDING",
                "Another change to this object is still being saved; try again when it finishes",
                "object_id",
                {"pending": busy},
            )

    def _enter(self, targets: Tuple[str, ...]) -> None:
        for target in targets:
            self._states[target] = MutationState.PENDING

    def _settle(self, targets: Tuple[str, ...], state: MutationState) -> None:
        for target in targets:
            if self.objects.has_object(target):
                self._states[target] = state
            else:
                # Settled ids of objects that no longer exist carry no information.
                self._states.pop(target, None)
        self._inflight.pop(targets, None)

    async def drain(self) -> None:
        """Wait until every in-flight collaborator call has settled."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    async def _confirm(self, call: Awaitable[dict], finalize: Finalize) -> dict:
        try:
            response = await call
        except asyncio.CancelledError:
            finalize({"data": None, "error": "persistence call cancelled"})
            raise
        except Exception as exc:
            logger.warning("persistence_call_raised error=%s", exc)
            response = {"data": None, "error": str(exc) or type(exc).__name__}
        result = finalize(_normalize_response(response))
        if self._save_deferred and not self.pending_ids():
            await self._save_now()
        return result

    async def _run_confirmed(self, targets: Tuple[str, ...], call: Awaitable[dict], finalize: Finalize) -> dict:
        op = asyncio.ensure_future(self._confirm(call, finalize))
        self._inflight[targets] = op
        # Shielded: the caller may go away, the confirmation may not.
        return await asyncio.shield(op)

    # saving

    async def _save_now(self) -> dict:
        self._save_deferred = False
        saved = _normalize_response(await self.persistence.save_data_model(self.export_schema()))
        if saved["error"] is not None:
            logger.warning("data_model_save_failed error=%s", saved["error"])
        return saved

    async def save_data_model(self) -> dict:
        """Save the whole model, or defer it until no duplicate or delete is pending.

        A pending optimistic copy (or a pending removal) must never reach the
        backend: the save runs once the last in-flight confirmation settles,
        from the committed or rolled-back state.
        """
        if self.persistence is None:
            return {"data": None, "error": None, "deferred": False}
        if self.pending_ids():
            self._save_deferred = True
            logger.info("data_model_save_deferred pending=%s", self.pending_ids())
            return {"data": None, "error": None, "deferred": True}
        return {**await self._save_now(), "deferred": False}

    # guarded sync mutations

    def create_object(self, data: dict) -> dict:
        return self.objects.create_object(data)

    def create_from_template(self, template_id: str, overrides: dict | None = None) -> dict:
        return self.objects.create_from_template(template_id, overrides)

    def update_object(self, object_id: str, patch: dict) -> dict:
        try:
            self._guard(object_id)
        except BusyError as exc:
            return failure(exc, "object")
        return self.objects.update_object(object_id, patch)

    def add_field(self, object_id: str, data: dict) -> dict:
        try:
            self._guard(object_id)
        except BusyError as exc:
            return failure(exc, "field")
        return self.objects.add_field(object_id, data)

    def update_field(self, object_id: str, field_id: str, patch: dict) -> dict:
        try:
            self._guard(object_id)
        except BusyError as exc:
            return failure(exc, "field")
        return self.objects.update_field(object_id, field_id, patch)

    def remove_field(self, object_id: str, field_id: str) -> dict:
        try:
            self._guard(object_id)
        except BusyError as exc:
            return failure(exc, "field")
        return self.objects.remove_field(object_id, field_id)

    def add_association(self, source_id: str, target_id: str, cardinality: str, label: str) -> dict:
        try:
            self._guard(source_id, target_id)
        except BusyError as exc:
            return failure(exc, "association")
        return self.associations.add_association(source_id, target_id, cardinality, label)

    def remove_association(self, association_id: str) -> dict:
        assoc = self.associations.get_association(association_id)
        if assoc is not None:
            try:
                self._guard(assoc["source_object_id"], assoc["target_object_id"])
            except BusyError as exc:
                return failure(exc, "association")
        return self.associations.remove_association(association_id)

    # optimistic async mutations

    async def duplicate_object_optimistic(self, object_id: str) -> dict:
        try:
            self._guard(object_id)
        except BusyError as exc:
            return _async_failure(exc)
        local = self.objects.duplicate_object(object_id)
        if not local["ok"]:
            return {**local, "data": None, "error": local["errors"][0]["message"]}
        dup_id = local["object"]["id"]
        targets = (object_id, dup_id)
        self._enter(targets)
        logger.info("duplicate_pending object_id=%s copy_id=%s", object_id, dup_id)

        if self.persistence is None:
            self._settle(targets, MutationState.COMMITTED)
            return {**success(), "data": local["object"], "error": None}

        def finalize(response: dict) -> dict:
            if response["error"] is not None:
                self.objects.discard(dup_id)
                self._settle(targets, MutationState.ROLLED_BACK)
                logger.warning("duplicate_rolled_back object_id=%s error=%s", object_id, response["error"])
                exc = PersistenceError("PERSISTENCE_FAILED", response["error"], None, {"object_id": object_id})
                return _async_failure(exc)
            reconciled, warnings = self._reconcile(dup_id, response["data"])
            self._settle(targets, MutationState.COMMITTED)
            if reconciled["id"] != dup_id:
                self._states[reconciled["id"]] = MutationState.COMMITTED
            logger.info("duplicate_committed object_id=%s copy_id=%s", object_id, reconciled["id"])
            return {**success(warnings=warnings), "data": reconciled, "error": None}

        return await self._run_confirmed(targets, self.persistence.duplicate_custom_object(object_id), finalize)

    def _reconcile(self, local_id: str, server: dict) -> Tuple[dict, List[Issue]]:
        """Fold server-assigned identity into the optimistic copy."""
        local = self.objects.get_object(local_id)
        merged = dict(local)
        for key in ("id", "created_at", "updated_at"):
            if isinstance(server.get(key), str) and server[key]:
                merged[key] = server[key]
        server_fields = server.get("fields")
        if isinstance(server_fields, list) and len(server_fields) == len(local["fields"]):
            fields = []
            for mine, theirs in zip(local["fields"], server_fields):
                same = isinstance(theirs, dict) and theirs.get("name") == mine["name"] and isinstance(theirs.get("id"), str)
                fields.append({**mine, "id": theirs["id"]} if same else mine)
            merged["fields"] = fields
        if isinstance(server.get("api_name"), str) and server["api_name"]:
            merged["api_name"] = server["api_name"]

        result = self.objects.replace_object(local_id, merged)
        if result["ok"]:
            return result["object"], []
        warnings = list(result["errors"])
        # Keep our api_name if the server's would collide locally.
        merged["api_name"] = local["api_name"]
        result = self.objects.replace_object(local_id, merged)
        if result["ok"]:
            return result["object"], warnings
        warnings.extend(result["errors"])
        logger.warning("duplicate_reconcile_skipped copy_id=%s errors=%s", local_id, warnings)
        return local, warnings

    async def delete_object_safely(self, object_id: str) -> dict:
        try:
            self._guard(object_id)
            if not self.objects.has_object(object_id):
                raise NotFoundError("OBJECT_NOT_FOUND", "object not found", "object_id", {"object_id": object_id})
            blocking = self.associations.associations_for_object(object_id)
            if blocking:
                raise ReferentialIntegrityError(
                    "OBJECT_HAS_ASSOCIATIONS",
                    f"Cannot delete: {len(blocking)} association{'s' if len(blocking) != 1 else ''} to other objects",
                    "object_id",
                    {"associations": [{"id": a["id"], "label": a["label"]} for a in blocking]},
                )
        except SchemaError as exc:
            return _async_failure(exc)

        position = self.objects.position_of(object_id)
        removed = self.objects.delete_object(object_id)
        if not removed["ok"]:
            return {**removed, "data": None, "error": removed["errors"][0]["message"]}
        deleted = removed["object"]
        targets = (object_id,)
        self.objects.reserve_api_name(object_id, deleted["api_name"])
        self._enter(targets)
        logger.info("delete_pending object_id=%s", object_id)

        if self.persistence is None:
            self.objects.release_api_name(object_id)
            self._settle(targets, MutationState.COMMITTED)
            return {**success(), "data": deleted, "error": None}

        def finalize(response: dict) -> dict:
            self.objects.release_api_name(object_id)
            if response["error"] is not None:
                self.objects.reinstate(deleted, position)
                self._settle(targets, MutationState.ROLLED_BACK)
                logger.warning("delete_rolled_back object_id=%s error=%s", object_id, response["error"])
                exc = PersistenceError("PERSISTENCE_FAILED", response["error"], None, {"object_id": object_id})
                return _async_failure(exc)
            self._settle(targets, MutationState.COMMITTED)
            logger.info("delete_committed object_id=%s", object_id)
            return {**success(), "data": deleted, "error": None}

        return await self._run_confirmed(targets, self.persistence.delete_custom_object(object_id), finalize)

    # export / import

    def export_schema(self) -> dict:
        export = {
            "version": EXPORT_VERSION,
            "objects": self.objects.list_objects(),
            "associations": self.associations.list_associations(),
        }
        export["schema_hash"] = schema_hash(export)
        return export

    def import_schema(self, export: dict) -> dict:
        """Replace the whole data model from an export; nothing changes on failure."""
        objects_before = self.objects.snapshot()
        assocs_before = self.associations.snapshot()
        try:
            if self.pending_ids():
                raise BusyError("MUTATION_PENDING", "Changes are still being saved", None, {"pending": self.pending_ids()})
            if not isinstance(export, dict):
                raise ValidationError("TYPE_INVALID", "export must be a dict", None)
            if export.get("version", EXPORT_VERSION) != EXPORT_VERSION:
                raise ValidationError("EXPORT_VERSION_UNSUPPORTED", f"export version must be '{EXPORT_VERSION}'", "version")
            expected = export.get("schema_hash")
            if expected is not None and expected != schema_hash(export):
                raise ValidationError("SCHEMA_HASH_MISMATCH", "schema_hash does not match export content", "schema_hash")
            raw_objects = export.get("objects") or []
            raw_assocs = export.get("associations") or []
            if not isinstance(raw_objects, list) or not isinstance(raw_assocs, list):
                raise ValidationError("TYPE_INVALID", "objects and associations must be lists", None)
            objects = [CustomObject.from_dict(o, f"objects[{i}]") for i, o in enumerate(raw_objects)]
            assocs = [Association.from_dict(a, f"associations[{i}]") for i, a in enumerate(raw_assocs)]
            self.objects.load_objects(objects)
            self.associations.load_associations(assocs)
        except SchemaError as exc:
            self.objects.restore(objects_before)
            self.associations.restore(assocs_before)
            return failure(exc, "schema")
        self._states.clear()
        logger.info("schema_imported objects=%s associations=%s", len(objects), len(assocs))
        return success("schema", self.export_schema())
