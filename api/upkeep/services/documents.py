"""Document store primitives shared by the in-memory and Postgres stores."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol


class StoreError(Exception):
    """Base document store error."""


class StoreUnavailableError(StoreError):
    """Raised when the backing database is unavailable or not configured."""


class StoreNotFoundError(StoreError):
    """Raised when an update targets a document that does not exist."""


class _Sentinel:
    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return self.name


SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")
DELETE_FIELD = _Sentinel("DELETE_FIELD")


@dataclass(frozen=True, slots=True)
class Timestamp:
    """Wrapped store timestamp, UTC seconds plus nanoseconds."""

    seconds: int
    nanos: int = 0

    @classmethod
    def from_datetime(cls, value: datetime) -> Timestamp:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        delta = value - datetime(1970, 1, 1, tzinfo=timezone.utc)
        seconds = delta.days * 86400 + delta.seconds
        return cls(seconds=seconds, nanos=delta.microseconds * 1000)

    def to_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.seconds, tz=timezone.utc).replace(microsecond=self.nanos // 1000)


@dataclass(slots=True)
class DocumentSnapshot:
    id: str
    path: str
    data: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


class WriteBatch(Protocol):
    def update(self, path: str, fields: Mapping[str, Any]) -> None: ...

    async def commit(self) -> None: ...

    def __len__(self) -> int: ...


class Transaction(Protocol):
    async def get(self, path: str) -> DocumentSnapshot | None: ...

    def update(self, path: str, fields: Mapping[str, Any]) -> None: ...

    def create(self, collection: str, data: Mapping[str, Any]) -> str: ...


class DocumentStore(Protocol):
    async def query(self, collection: str, filters: Mapping[str, Any]) -> list[DocumentSnapshot]: ...

    async def get(self, path: str) -> DocumentSnapshot | None: ...

    async def add(self, collection: str, data: Mapping[str, Any]) -> str: ...

    def batch(self) -> WriteBatch: ...

    def transaction(self) -> AbstractAsyncContextManager[Transaction]: ...

    async def close(self) -> None: ...


def split_path(path: str) -> tuple[str, str]:
    collection, separator, doc_id = path.strip("/").rpartition("/")
    if not separator or not collection or not doc_id:
        raise StoreError(f"invalid document path: {path!r}")
    return collection, doc_id


def apply_fields(data: dict[str, Any], fields: Mapping[str, Any], *, server_time: datetime) -> dict[str, Any]:
    merged = dict(data)
    for key, value in fields.items():
        if value is DELETE_FIELD:
            merged.pop(key, None)
        elif value is SERVER_TIMESTAMP:
            merged[key] = Timestamp.from_datetime(server_time)
        else:
            merged[key] = value
    return merged
