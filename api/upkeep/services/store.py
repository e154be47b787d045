from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Mapping
from uuid import uuid4

from upkeep.services.documents import (
    DocumentSnapshot,
    StoreError,
    StoreNotFoundError,
    apply_fields,
    split_path,
)


class InMemoryDocumentStore:
    """Dict-backed document store for tests and local runs."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self.collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.committed_batch_sizes: list[int] = []
        self.failing_batch_commits: set[int] = set()
        self._batch_commit_attempts = 0
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()

    def put(self, path: str, data: Mapping[str, Any]) -> None:
        collection, doc_id = split_path(path)
        self.collections[collection][doc_id] = dict(data)

    def document(self, path: str) -> dict[str, Any] | None:
        collection, doc_id = split_path(path)
        return self.collections.get(collection, {}).get(doc_id)

    async def query(self, collection: str, filters: Mapping[str, Any]) -> list[DocumentSnapshot]:
        docs = self.collections.get(collection, {})
        return [
            self._snapshot(collection, doc_id, data)
            for doc_id, data in sorted(docs.items())
            if all(key in data and data[key] == value for key, value in filters.items())
        ]

    async def get(self, path: str) -> DocumentSnapshot | None:
        collection, doc_id = split_path(path)
        data = self.collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return self._snapshot(collection, doc_id, data)

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = uuid4().hex
        self.collections[collection][doc_id] = apply_fields({}, data, server_time=self._clock())
        return doc_id

    def batch(self) -> InMemoryWriteBatch:
        return InMemoryWriteBatch(self)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryTransaction]:
        async with self._lock:
            txn = InMemoryTransaction(self)
            yield txn
            txn.apply()

    async def close(self) -> None:
        return None

    def _next_batch_commit_fails(self) -> bool:
        self._batch_commit_attempts += 1
        return self._batch_commit_attempts in self.failing_batch_commits

    def _apply_updates(self, updates: list[tuple[str, Mapping[str, Any]]]) -> None:
        server_time = self._clock()
        staged: dict[tuple[str, str], dict[str, Any]] = {}
        for path, fields in updates:
            collection, doc_id = split_path(path)
            key = (collection, doc_id)
            current = staged.get(key, self.collections.get(collection, {}).get(doc_id))
            if current is None:
                raise StoreNotFoundError(f"document not found: {path}")
            staged[key] = apply_fields(current, fields, server_time=server_time)
        for (collection, doc_id), data in staged.items():
            self.collections[collection][doc_id] = data

    @staticmethod
    def _snapshot(collection: str, doc_id: str, data: dict[str, Any]) -> DocumentSnapshot:
        return DocumentSnapshot(id=doc_id, path=f"{collection}/{doc_id}", data=copy.deepcopy(data))


class InMemoryWriteBatch:
    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store
        self._updates: list[tuple[str, Mapping[str, Any]]] = []

    def __len__(self) -> int:
        return len(self._updates)

    def update(self, path: str, fields: Mapping[str, Any]) -> None:
        self._updates.append((path, dict(fields)))

    async def commit(self) -> None:
        if self._store._next_batch_commit_fails():
            raise StoreError("batch commit rejected")
        self._store._apply_updates(self._updates)
        self._store.committed_batch_sizes.append(len(self._updates))


class InMemoryTransaction:
    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store
        self._updates: list[tuple[str, Mapping[str, Any]]] = []
        self._creates: list[tuple[str, str, Mapping[str, Any]]] = []

    async def get(self, path: str) -> DocumentSnapshot | None:
        return await self._store.get(path)

    def update(self, path: str, fields: Mapping[str, Any]) -> None:
        self._updates.append((path, dict(fields)))

    def create(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = uuid4().hex
        self._creates.append((collection, doc_id, dict(data)))
        return doc_id

    def apply(self) -> None:
        self._store._apply_updates(self._updates)
        server_time = self._store._clock()
        for collection, doc_id, data in self._creates:
            self._store.collections[collection][doc_id] = apply_fields({}, data, server_time=server_time)
