from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime
from functools import lru_cache
from typing import Any, Mapping
from uuid import uuid4

import asyncpg  # type: ignore[import-untyped]

from upkeep.core.config import get_settings
from upkeep.services.documents import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    StoreError,
    StoreNotFoundError,
    StoreUnavailableError,
    Timestamp,
    split_path,
)
from upkeep.services.store import InMemoryDocumentStore

DOCUMENTS_DDL = """
create table if not exists documents (
  collection text not null,
  id text not null,
  data jsonb not null default '{}'::jsonb,
  updated_at timestamptz not null default now(),
  primary key (collection, id)
);
create index if not exists documents_data_gin on documents using gin (data jsonb_path_ops);
"""

_TIMESTAMP_KEY = "__timestamp__"
_DATE_KEY = "__date__"


class PostgresDocumentStore:
    """Document store over a single jsonb `documents` table."""

    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(DOCUMENTS_DDL)

    async def query(self, collection: str, filters: Mapping[str, Any]) -> list[DocumentSnapshot]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select id, data
            from documents
            where collection = $1
              and data @> $2::jsonb
            order by id
            """,
            collection,
            _dump_json(dict(filters)),
        )
        return [self._row_to_snapshot(collection, row) for row in rows]

    async def get(self, path: str) -> DocumentSnapshot | None:
        collection, doc_id = split_path(path)
        pool = await self._get_pool()
        row = await pool.fetchrow(
            "select id, data from documents where collection = $1 and id = $2",
            collection,
            doc_id,
        )
        if not row:
            return None
        return self._row_to_snapshot(collection, row)

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = uuid4().hex
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            server_time = await conn.fetchval("select now()")
            await conn.execute(
                "insert into documents (collection, id, data) values ($1, $2, $3::jsonb)",
                collection,
                doc_id,
                _dump_json(_resolve_fields(data, server_time)),
            )
        return doc_id

    def batch(self) -> PostgresWriteBatch:
        return PostgresWriteBatch(self)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresTransaction]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                server_time = await conn.fetchval("select now()")
                txn = PostgresTransaction(conn, server_time)
                yield txn
                await txn.write()

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise StoreUnavailableError("UPKEEP_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise StoreUnavailableError("database unavailable") from exc

    @staticmethod
    def _row_to_snapshot(collection: str, row: asyncpg.Record) -> DocumentSnapshot:
        data = row["data"]
        if isinstance(data, str):
            data = json.loads(data)
        return DocumentSnapshot(id=row["id"], path=f"{collection}/{row['id']}", data=_decode_value(data))


class PostgresWriteBatch:
    def __init__(self, store: PostgresDocumentStore) -> None:
        self._store = store
        self._updates: list[tuple[str, Mapping[str, Any]]] = []

    def __len__(self) -> int:
        return len(self._updates)

    def update(self, path: str, fields: Mapping[str, Any]) -> None:
        self._updates.append((path, dict(fields)))

    async def commit(self) -> None:
        if not self._updates:
            return
        pool = await self._store._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                server_time = await conn.fetchval("select now()")
                for path, fields in self._updates:
                    await _update_document(conn, path, fields, server_time)


class PostgresTransaction:
    """Reads lock rows immediately; writes are buffered until the block exits."""

    def __init__(self, conn: asyncpg.Connection, server_time: datetime) -> None:
        self._conn = conn
        self._server_time = server_time
        self._updates: list[tuple[str, Mapping[str, Any]]] = []
        self._creates: list[tuple[str, str, Mapping[str, Any]]] = []

    async def get(self, path: str) -> DocumentSnapshot | None:
        collection, doc_id = split_path(path)
        row = await self._conn.fetchrow(
            "select id, data from documents where collection = $1 and id = $2 for update",
            collection,
            doc_id,
        )
        if not row:
            return None
        return PostgresDocumentStore._row_to_snapshot(collection, row)

    def update(self, path: str, fields: Mapping[str, Any]) -> None:
        self._updates.append((path, dict(fields)))

    def create(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = uuid4().hex
        self._creates.append((collection, doc_id, dict(data)))
        return doc_id

    async def write(self) -> None:
        for path, fields in self._updates:
            await _update_document(self._conn, path, fields, self._server_time)
        for collection, doc_id, data in self._creates:
            await self._conn.execute(
                "insert into documents (collection, id, data) values ($1, $2, $3::jsonb)",
                collection,
                doc_id,
                _dump_json(_resolve_fields(data, self._server_time)),
            )


async def _update_document(
    conn: asyncpg.Connection,
    path: str,
    fields: Mapping[str, Any],
    server_time: datetime,
) -> None:
    collection, doc_id = split_path(path)
    removed = [key for key, value in fields.items() if value is DELETE_FIELD]
    merged = _resolve_fields({k: v for k, v in fields.items() if v is not DELETE_FIELD}, server_time)
    result = await conn.execute(
        """
        update documents
        set
          data = (data || $3::jsonb) - $4::text[],
          updated_at = now()
        where collection = $1
          and id = $2
        """,
        collection,
        doc_id,
        _dump_json(merged),
        removed,
    )
    if result.split()[-1] == "0":
        raise StoreNotFoundError(f"document not found: {path}")


def _resolve_fields(fields: Mapping[str, Any], server_time: datetime) -> dict[str, Any]:
    return {key: server_time if value is SERVER_TIMESTAMP else value for key, value in fields.items()}


def _dump_json(value: Any) -> str:
    return json.dumps(_encode_value(value))


def _encode_value(value: Any) -> Any:
    if isinstance(value, Timestamp):
        value = value.to_datetime()
    if isinstance(value, datetime):
        return {_TIMESTAMP_KEY: value.isoformat()}
    if isinstance(value, date):
        return {_DATE_KEY: value.isoformat()}
    if isinstance(value, dict):
        return {key: _encode_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode_value(item) for item in value]
    if value is SERVER_TIMESTAMP or value is DELETE_FIELD:
        raise StoreError(f"sentinel {value!r} is only valid as a top-level field value")
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {_TIMESTAMP_KEY}:
            try:
                return Timestamp.from_datetime(datetime.fromisoformat(value[_TIMESTAMP_KEY]))
            except (TypeError, ValueError):
                return value
        if set(value) == {_DATE_KEY}:
            try:
                return date.fromisoformat(value[_DATE_KEY])
            except (TypeError, ValueError):
                return value
        return {key: _decode_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_decode_value(item) for item in value]
    return value


@lru_cache
def get_store() -> DocumentStore:
    settings = get_settings()
    if settings.store_backend == "memory":
        return InMemoryDocumentStore()
    return PostgresDocumentStore(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
