from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest

os.environ.setdefault("UPKEEP_OTEL_ENABLED", "false")

from upkeep.services.store import InMemoryDocumentStore  # noqa: E402

NOW = datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=lambda: NOW)
