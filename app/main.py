"""FastAPI app exposing the data model and event catalog."""

from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import event_catalog
import template_catalog
from app.persistence import MemoryPersistence, SupabasePersistence
from schema_coordinator import SchemaMutationCoordinator


logger = logging.getLogger("strategist.api")
logging.basicConfig(level=logging.INFO)

USE_DB = os.getenv("USE_DB", "").strip() == "1"
PROJECT_ID = os.getenv("STRATEGIST_PROJECT_ID", "").strip() or "local"
SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip()
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
_CORS_ORIGINS = [
    origin.strip().rstrip("/")
    for origin in os.getenv("STRATEGIST_CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

_STATUS_BY_KIND = {
    "ValidationError": 400,
    "NotFoundError": 404,
    "ReferentialIntegrityError": 409,
    "DuplicateError": 409,
    "BusyError": 409,
    "PersistenceError": 502,
}


def _make_persistence():
    if USE_DB:
        from app.stores_db import DbPersistence

        return DbPersistence(PROJECT_ID)
    if SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY:
        return SupabasePersistence(PROJECT_ID, SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
    return MemoryPersistence(PROJECT_ID)


persistence = _make_persistence()
coordinator = SchemaMutationCoordinator(persistence)
logger.info("persistence backend=%s project_id=%s", persistence.backend, PROJECT_ID)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    loaded = await persistence.load_data_model()
    if loaded["error"] is not None:
        logger.warning("data_model_load_failed error=%s", loaded["error"])
    else:
        result = coordinator.import_schema(loaded["data"])
        if not result["ok"]:
            logger.warning("data_model_import_failed errors=%s", result["errors"])
    yield
    await coordinator.drain()


app = FastAPI(title="Banking Journey Strategist", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(
    code: str,
    message: str,
    path: str | None = None,
    detail: dict | None = None,
    status: int = 400,
    kind: str = "ValidationError",
) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "kind": kind, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _result_response(result: dict, status: int = 200) -> JSONResponse:
    if not result.get("ok"):
        kind = result["errors"][0].get("kind") if result.get("errors") else None
        status = _STATUS_BY_KIND.get(kind, 400)
    return JSONResponse(jsonable_encoder(result), status_code=status)


async def _read_json(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


async def _persisted(result: dict, status: int = 200) -> JSONResponse:
    """Save the data model after a successful local mutation."""
    if result.get("ok"):
        saved = await coordinator.save_data_model()
        if saved["error"] is not None:
            result = dict(result)
            result["warnings"] = [
                *result.get("warnings", []),
                {"code": "SAVE_FAILED", "kind": "PersistenceError", "message": saved["error"], "path": None, "detail": None},
            ]
    return _result_response(result, status)


@app.get("/health")
async def health() -> dict:
    return {"ok": True, "backend": persistence.backend, "pending": coordinator.pending_ids()}


# event catalog


@app.get("/events")
async def list_events() -> dict:
    return {"ok": True, "events": [e.to_dict() for e in event_catalog.list_events()]}


@app.get("/events/categories")
async def list_event_categories() -> dict:
    grouped = event_catalog.get_events_by_category()
    categories = [
        {
            "id": category.value,
            "label": event_catalog.category_label(category),
            "events": [e.to_dict() for e in events],
        }
        for category, events in grouped.items()
    ]
    return {"ok": True, "categories": categories}


@app.get("/events/{event_id}/display-name")
async def event_display_name(event_id: str) -> dict:
    return {
        "ok": True,
        "event_id": event_id,
        "display_name": event_catalog.get_event_display_name(event_id),
        "custom": event_catalog.validate_custom_event_format(event_id),
    }


@app.get("/events/{event_id}")
async def resolve_event(event_id: str) -> JSONResponse:
    return _result_response(event_catalog.resolve_event(event_id))


@app.post("/rules/activity/validate")
async def validate_activity_rule(request: Request) -> JSONResponse:
    body = await _read_json(request)
    if body is None:
        return _error_response("BODY_INVALID", "request body must be a JSON object")
    issues = event_catalog.validate_activity_condition(body)
    return _result_response({"ok": not issues, "errors": issues, "warnings": []})


# templates


@app.get("/templates")
async def list_templates(q: str | None = None) -> dict:
    templates = template_catalog.search_templates(q) if q else template_catalog.list_templates()
    return {"ok": True, "templates": [t.to_dict() for t in templates]}


# objects


@app.get("/objects")
async def list_objects() -> dict:
    objects = coordinator.objects.list_objects()
    for obj in objects:
        obj["association_count"] = coordinator.associations.association_count(obj["id"])
    return {"ok": True, "objects": objects}


@app.post("/objects")
async def create_object(request: Request) -> JSONResponse:
    body = await _read_json(request)
    if body is None:
        return _error_response("BODY_INVALID", "request body must be a JSON object")
    return await _persisted(coordinator.create_object(body), status=201)


@app.post("/objects/from-template")
async def create_object_from_template(request: Request) -> JSONResponse:
    body = await _read_json(request)
    if body is None or not isinstance(body.get("template_id"), str):
        return _error_response("TEMPLATE_ID_REQUIRED", "template_id required", "template_id")
    overrides = {k: body[k] for k in ("label", "description", "icon") if body.get(k) is not None}
    return await _persisted(coordinator.create_from_template(body["template_id"], overrides), status=201)


@app.get("/objects/{object_id}")
async def get_object(object_id: str) -> JSONResponse:
    obj = coordinator.objects.get_object(object_id)
    if obj is None:
        return _error_response("OBJECT_NOT_FOUND", "object not found", "object_id", status=404, kind="NotFoundError")
    body = {
        "ok": True,
        "errors": [],
        "warnings": [],
        "object": obj,
        "associations": coordinator.associations.associations_for_object(object_id),
        "state": coordinator.mutation_state(object_id).value,
    }
    return _result_response(body)


@app.patch("/objects/{object_id}")
async def update_object(object_id: str, request: Request) -> JSONResponse:
    body = await _read_json(request)
    if body is None:
        return _error_response("BODY_INVALID", "request body must be a JSON object")
    return await _persisted(coordinator.update_object(object_id, body))


@app.delete("/objects/{object_id}")
async def delete_object(object_id: str) -> JSONResponse:
    return _result_response(await coordinator.delete_object_safely(object_id))


@app.post("/objects/{object_id}/duplicate")
async def duplicate_object(object_id: str) -> JSONResponse:
    return _result_response(await coordinator.duplicate_object_optimistic(object_id), status=201)


@app.post("/objects/{object_id}/fields")
async def add_field(object_id: str, request: Request) -> JSONResponse:
    body = await _read_json(request)
    if body is None:
        return _error_response("BODY_INVALID", "request body must be a JSON object")
    return await _persisted(coordinator.add_field(object_id, body), status=201)


@app.patch("/objects/{object_id}/fields/{field_id}")
async def update_field(object_id: str, field_id: str, request: Request) -> JSONResponse:
    body = await _read_json(request)
    if body is None:
        return _error_response("BODY_INVALID", "request body must be a JSON object")
    return await _persisted(coordinator.update_field(object_id, field_id, body))


@app.delete("/objects/{object_id}/fields/{field_id}")
async def remove_field(object_id: str, field_id: str) -> JSONResponse:
    return await _persisted(coordinator.remove_field(object_id, field_id))


# associations


@app.get("/associations")
async def list_associations(object_id: str | None = None) -> dict:
    if object_id:
        associations = coordinator.associations.associations_for_object(object_id)
    else:
        associations = coordinator.associations.list_associations()
    return {"ok": True, "associations": associations}


@app.post("/associations")
async def add_association(request: Request) -> JSONResponse:
    body = await _read_json(request)
    if body is None:
        return _error_response("BODY_INVALID", "request body must be a JSON object")
    result = coordinator.add_association(
        body.get("source_object_id"),
        body.get("target_object_id"),
        body.get("cardinality"),
        body.get("label"),
    )
    return await _persisted(result, status=201)


@app.delete("/associations/{association_id}")
async def remove_association(association_id: str) -> JSONResponse:
    return await _persisted(coordinator.remove_association(association_id))


# schema export / import


@app.get("/schema/export")
async def export_schema() -> dict:
    return {"ok": True, "schema": coordinator.export_schema()}


@app.post("/schema/import")
async def import_schema(request: Request) -> JSONResponse:
    body = await _read_json(request)
    if body is None:
        return _error_response("BODY_INVALID", "request body must be a JSON object")
    return await _persisted(coordinator.import_schema(body.get("schema", body)))
