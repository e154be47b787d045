from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from upkeep.services.documents import StoreError
from upkeep.services.ledger import LedgerAdjuster, coerce_credits, is_on_hold
from upkeep.services.store import InMemoryDocumentStore


def _transactions(store: InMemoryDocumentStore, user_id: str) -> list[dict[str, Any]]:
    return list(store.collections.get(f"wallets/{user_id}/transactions", {}).values())


def _finalized(store: InMemoryDocumentStore, user_id: str) -> list[dict[str, Any]]:
    return [txn for txn in _transactions(store, user_id) if txn["type"] == "debit" and not is_on_hold(txn)]


@pytest.fixture
def seeded(store: InMemoryDocumentStore) -> InMemoryDocumentStore:
    store.put("posts/post-1", {"title": "Harvest Fair", "ownerId": "user-1"})
    store.put("wallets/user-1", {"balance": 1000, "heldCredits": 200})
    store.put(
        "wallets/user-1/transactions/hold-1",
        {
            "type": "debit",
            "amount": 200,
            "description": "Post creation fee (on hold)",
            "referenceId": "post-1",
            "status": "on_hold",
        },
    )
    return store


def test_deduct_finalizes_held_fee(seeded: InMemoryDocumentStore) -> None:
    ok = asyncio.run(LedgerAdjuster(seeded).deduct("user-1", "post-1", 200))

    assert ok is True
    wallet = seeded.document("wallets/user-1")
    assert wallet["balance"] == 800
    assert wallet["heldCredits"] == 0
    assert "updatedAt" in wallet

    finalized = _finalized(seeded, "user-1")
    assert len(finalized) == 1
    assert finalized[0]["amount"] == 200
    assert finalized[0]["parentTxnId"] == "hold-1"
    assert finalized[0]["referenceId"] == "post-1"
    assert finalized[0]["description"] == "Post approval fee: Harvest Fair"


def test_deduct_is_idempotent(seeded: InMemoryDocumentStore) -> None:
    ledger = LedgerAdjuster(seeded)

    async def run() -> tuple[bool, bool]:
        return await ledger.deduct("user-1", "post-1", 200), await ledger.deduct("user-1", "post-1", 200)

    assert asyncio.run(run()) == (True, True)
    assert len(_finalized(seeded, "user-1")) == 1
    assert seeded.document("wallets/user-1")["balance"] == 800


def test_deduct_without_hold_is_idempotent(store: InMemoryDocumentStore) -> None:
    store.put("wallets/user-6", {"balance": 600, "heldCredits": 0})
    ledger = LedgerAdjuster(store)

    async def run() -> tuple[bool, bool]:
        return await ledger.deduct("user-6", "post-6", 200), await ledger.deduct("user-6", "post-6", 200)

    assert asyncio.run(run()) == (True, True)
    [debit] = _finalized(store, "user-6")
    assert debit["referenceId"] == "post-6"
    assert "parentTxnId" not in debit
    assert store.document("wallets/user-6")["balance"] == 400


def test_deduct_recognizes_legacy_hold_description(store: InMemoryDocumentStore) -> None:
    store.put("wallets/user-2", {"balance": 500, "heldCredits": 200})
    store.put(
        "wallets/user-2/transactions/hold-legacy",
        {"type": "debit", "amount": 200, "description": "Event post fee - On Hold", "referenceId": "post-9"},
    )

    assert asyncio.run(LedgerAdjuster(store).deduct("user-2", "post-9", 200)) is True
    assert _finalized(store, "user-2")[0]["parentTxnId"] == "hold-legacy"


def test_deduct_coerces_string_balances_and_allows_negative(store: InMemoryDocumentStore) -> None:
    store.put("wallets/user-3", {"balance": "150", "heldCredits": "not-a-number"})

    assert asyncio.run(LedgerAdjuster(store).deduct("user-3", "post-3", 200)) is True
    wallet = store.document("wallets/user-3")
    assert wallet["balance"] == -50
    assert wallet["heldCredits"] == 0
    finalized = _finalized(store, "user-3")
    assert "parentTxnId" not in finalized[0]
    assert finalized[0]["description"] == "Post approval fee: Untitled post"


def test_deduct_warns_when_held_credits_are_short(
    store: InMemoryDocumentStore, caplog: pytest.LogCaptureFixture
) -> None:
    store.put("wallets/user-4", {"balance": 1000, "heldCredits": 50})

    with caplog.at_level(logging.WARNING, logger="upkeep.services.ledger"):
        assert asyncio.run(LedgerAdjuster(store).deduct("user-4", "post-4", 200)) is True

    assert "held credits below fee" in caplog.text
    assert store.document("wallets/user-4")["heldCredits"] == 0


def test_deduct_without_wallet_reports_failure(store: InMemoryDocumentStore) -> None:
    assert asyncio.run(LedgerAdjuster(store).deduct("ghost", "post-5", 200)) is False
    assert _transactions(store, "ghost") == []


def test_deduct_swallows_store_errors(seeded: InMemoryDocumentStore, monkeypatch: pytest.MonkeyPatch) -> None:
    async def broken_query(*_: Any, **__: Any) -> list[Any]:
        raise StoreError("history unavailable")

    monkeypatch.setattr(seeded, "query", broken_query)

    assert asyncio.run(LedgerAdjuster(seeded).deduct("user-1", "post-1", 200)) is False
    assert seeded.document("wallets/user-1")["balance"] == 1000


def test_coerce_credits() -> None:
    assert coerce_credits(12) == 12
    assert coerce_credits(12.9) == 12
    assert coerce_credits(" 40 ") == 40
    assert coerce_credits("7.5") == 7
    assert coerce_credits("nan") == 0
    assert coerce_credits(None) == 0
    assert coerce_credits(True) == 0
