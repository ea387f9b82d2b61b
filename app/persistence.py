"""Persistence collaborators for the data model.

A project's data model lives in the ``data.dataModel`` key of its
``implementations`` row. Every backend reads and writes that whole document;
duplicate and delete are computed against the stored copy, so the reply is
the backend's canonical view of the object.

All methods return ``{"data": ..., "error": ...}`` with exactly one of the
two set; backend failures never raise out of here.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Tuple, Type

import httpx

from association_graph import AssociationGraph
from object_store import ObjectStore
from schema_errors import SchemaError
from schema_types import Association, CustomObject
from strategist.schema_hash import schema_hash


logger = logging.getLogger("strategist.persistence")

DATA_MODEL_KEY = "dataModel"


class PersistenceBackendError(Exception):
    """Backend reachable but the project document is missing or unusable."""


def empty_model() -> dict:
    model = {"version": "1", "objects": [], "associations": []}
    model["schema_hash"] = schema_hash(model)
    return model


def _ok(data: Any) -> dict:
    return {"data": data, "error": None}


def _err(message: str) -> dict:
    return {"data": None, "error": message}


def _model_store(model: dict) -> Tuple[ObjectStore, AssociationGraph]:
    objects = ObjectStore()
    graph = AssociationGraph(objects)
    objects.load_objects([CustomObject.from_dict(o) for o in model.get("objects") or []])
    graph.load_associations([Association.from_dict(a) for a in model.get("associations") or []])
    return objects, graph


class DataModelPersistence:
    """Shared duplicate/delete/load/save over the stored project document."""

    backend = "base"
    backend_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id

    async def read_document(self) -> dict:
        raise NotImplementedError

    async def write_document(self, document: dict) -> None:
        raise NotImplementedError

    def _errors(self) -> Tuple[Type[BaseException], ...]:
        return (PersistenceBackendError, SchemaError, *self.backend_errors)

    async def _read_model(self) -> Tuple[dict, dict]:
        document = await self.read_document()
        if not isinstance(document, dict):
            raise PersistenceBackendError("project document is not an object")
        model = document.get(DATA_MODEL_KEY)
        if not isinstance(model, dict):
            model = empty_model()
        return document, copy.deepcopy(model)

    async def _write_model(self, document: dict, model: dict) -> None:
        model = dict(model)
        model["schema_hash"] = schema_hash(model)
        await self.write_document({**document, DATA_MODEL_KEY: model})

    def _fail(self, op: str, exc: BaseException) -> dict:
        message = exc.message if isinstance(exc, SchemaError) else str(exc)
        logger.warning("persistence_failed backend=%s op=%s project_id=%s error=%s", self.backend, op, self.project_id, message)
        return _err(message or type(exc).__name__)

    async def load_data_model(self) -> dict:
        try:
            _, model = await self._read_model()
        except self._errors() as exc:
            return self._fail("load", exc)
        return _ok(model)

    async def save_data_model(self, export: dict) -> dict:
        try:
            document, _ = await self._read_model()
            await self._write_model(document, export)
        except self._errors() as exc:
            return self._fail("save", exc)
        return _ok(export)

    async def duplicate_custom_object(self, object_id: str) -> dict:
        try:
            document, model = await self._read_model()
            objects, _ = _model_store(model)
            result = objects.duplicate_object(object_id)
            if not result["ok"]:
                return _err(f"Object not found: {object_id}")
            model["objects"] = objects.list_objects()
            await self._write_model(document, model)
        except self._errors() as exc:
            return self._fail("duplicate", exc)
        logger.info("persisted_duplicate backend=%s object_id=%s copy_id=%s", self.backend, object_id, result["object"]["id"])
        return _ok(result["object"])

    async def delete_custom_object(self, object_id: str) -> dict:
        try:
            document, model = await self._read_model()
            objects, _ = _model_store(model)
            result = objects.delete_object(object_id)
            if not result["ok"]:
                return _err(result["errors"][0]["message"])
            model["objects"] = objects.list_objects()
            await self._write_model(document, model)
        except self._errors() as exc:
            return self._fail("delete", exc)
        return _ok(result["object"])


class MemoryPersistence(DataModelPersistence):
    """Process-local backend; ``fail_next`` makes the next call report an error."""

    backend = "memory"

    def __init__(self, project_id: str = "local", document: dict | None = None) -> None:
        super().__init__(project_id)
        self._document = copy.deepcopy(document) if document else {DATA_MODEL_KEY: empty_model()}
        self._fail_message: str | None = None
        self.calls: list[str] = []

    def fail_next(self, message: str) -> None:
        self._fail_message = message

    async def read_document(self) -> dict:
        self.calls.append("read")
        if self._fail_message is not None:
            message, self._fail_message = self._fail_message, None
            raise PersistenceBackendError(message)
        return copy.deepcopy(self._document)

    async def write_document(self, document: dict) -> None:
        self.calls.append("write")
        self._document = copy.deepcopy(document)

    def document(self) -> dict:
        return copy.deepcopy(self._document)


class SupabasePersistence(DataModelPersistence):
    """PostgREST access to the ``implementations`` table."""

    backend = "supabase"
    backend_errors = (httpx.HTTPError, ValueError)

    def __init__(
        self,
        project_id: str,
        base_url: str,
        service_key: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(project_id)
        self._base_url = base_url.rstrip("/")
        self._service_key = service_key
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._service_key}",
            "apikey": self._service_key,
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers(),
            timeout=self._timeout,
            transport=self._transport,
        )

    async def read_document(self) -> dict:
        async with self._client() as client:
            res = await client.get(
                "/rest/v1/implementations",
                params={"id": f"eq.{self.project_id}", "select": "id,data"},
            )
            res.raise_for_status()
            rows = res.json()
        if not rows:
            raise PersistenceBackendError(f"Project not found: {self.project_id}")
        return rows[0].get("data") or {}

    async def write_document(self, document: dict) -> None:
        async with self._client() as client:
            res = await client.patch(
                "/rest/v1/implementations",
                params={"id": f"eq.{self.project_id}"},
                headers={"Prefer": "return=minimal"},
                json={"data": document},
            )
            res.raise_for_status()
