"""Postgres-backed project store for the data model document."""

from __future__ import annotations

from typing import Any, Callable, ContextManager

import anyio.to_thread
import psycopg2
import psycopg2.extras

from app.db import execute, fetch_one, get_conn
from app.persistence import DataModelPersistence, PersistenceBackendError


ConnFactory = Callable[[], ContextManager[Any]]


class DbPersistence(DataModelPersistence):
    """Reads and writes ``implementations.data`` through the psycopg2 pool.

    psycopg2 is blocking, so each statement runs on an anyio worker thread.
    """

    backend = "db"
    backend_errors = (psycopg2.Error, RuntimeError)

    def __init__(self, project_id: str, conn_factory: ConnFactory | None = None) -> None:
        super().__init__(project_id)
        self._conn_factory = conn_factory or get_conn

    def _read_sync(self) -> dict:
        with self._conn_factory() as conn:
            row = fetch_one(
                conn,
                "select data from implementations where id=%s",
                [self.project_id],
                query_name="implementations.get_data",
            )
        if row is None:
            raise PersistenceBackendError(f"Project not found: {self.project_id}")
        return row.get("data") or {}

    def _write_sync(self, document: dict) -> None:
        with self._conn_factory() as conn:
            updated = execute(
                conn,
                "update implementations set data=%s, updated_at=now() where id=%s",
                [psycopg2.extras.Json(document), self.project_id],
                query_name="implementations.update_data",
            )
        if updated == 0:
            raise PersistenceBackendError(f"Project not found: {self.project_id}")

    async def read_document(self) -> dict:
        return await anyio.to_thread.run_sync(self._read_sync)

    async def write_document(self, document: dict) -> None:
        await anyio.to_thread.run_sync(self._write_sync, document)
