"""Finalization of held post-creation fees against user wallets.

Approvals may be retried by the scheduler, so a deduction must be safe to
repeat: before touching the wallet the adjuster looks for a finalized debit
already linked (through ``parentTxnId``) to the post's on-hold debit.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from upkeep.schemas.records import WalletTransactionRecord
from upkeep.services.documents import SERVER_TIMESTAMP, DocumentSnapshot, DocumentStore, StoreNotFoundError

logger = logging.getLogger(__name__)

UNTITLED_POST = "Untitled post"


def is_on_hold(txn: dict[str, Any]) -> bool:
    if txn.get("status") == "on_hold":
        return True
    if txn.get("status") is None:
        description = txn.get("description")
        return isinstance(description, str) and "on hold" in description.lower()
    return False


def is_finalized_debit(txn: dict[str, Any]) -> bool:
    return txn.get("type") == "debit" and not is_on_hold(txn)


def coerce_credits(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str):
        raw = value.strip()
        try:
            return int(raw)
        except ValueError:
            pass
        try:
            parsed = float(raw)
        except ValueError:
            return 0
        return int(parsed) if math.isfinite(parsed) else 0
    return 0


class LedgerAdjuster:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def deduct(self, user_id: str, post_id: str, fee_credits: int) -> bool:
        """Move ``fee_credits`` from held to spent for ``post_id``; never raises."""
        try:
            title = await self._post_title(post_id)
            transactions = f"wallets/{user_id}/transactions"
            history = await self._store.query(transactions, {"referenceId": post_id})
            hold = _find_hold(history)
            if hold is not None:
                history = await self._store.query(transactions, {"parentTxnId": hold.id})
            if _already_finalized(history, hold):
                logger.info(
                    "fee already finalized; skipping: user_id=%s post_id=%s hold_id=%s",
                    user_id,
                    post_id,
                    hold.id if hold else None,
                )
                return True

            async with self._store.transaction() as txn:
                wallet = await txn.get(f"wallets/{user_id}")
                if wallet is None:
                    raise StoreNotFoundError(f"wallet not found for user {user_id}")

                balance = coerce_credits(wallet.get("balance"))
                held = coerce_credits(wallet.get("heldCredits"))
                if held < fee_credits:
                    logger.warning(
                        "held credits below fee, possible duplicate processing: user_id=%s post_id=%s held=%s fee=%s",
                        user_id,
                        post_id,
                        held,
                        fee_credits,
                    )

                txn.update(
                    f"wallets/{user_id}",
                    {
                        "balance": balance - fee_credits,
                        "heldCredits": max(0, held - fee_credits),
                        "updatedAt": SERVER_TIMESTAMP,
                    },
                )
                record = WalletTransactionRecord(
                    type="debit",
                    amount=fee_credits,
                    description=f"Post approval fee: {title}",
                    reference_id=post_id,
                    parent_txn_id=hold.id if hold else None,
                )
                txn.create(
                    f"wallets/{user_id}/transactions",
                    {**record.to_document(), "createdAt": SERVER_TIMESTAMP},
                )
        except Exception:
            logger.exception("credit deduction failed: user_id=%s post_id=%s", user_id, post_id)
            return False

        logger.info("credits deducted: user_id=%s post_id=%s amount=%s", user_id, post_id, fee_credits)
        return True

    async def _post_title(self, post_id: str) -> str:
        try:
            post = await self._store.get(f"posts/{post_id}")
        except Exception as exc:
            logger.warning("post title lookup failed: post_id=%s error=%s", post_id, exc)
            return UNTITLED_POST
        if post is None:
            return UNTITLED_POST
        title = post.get("title")
        return title.strip() if isinstance(title, str) and title.strip() else UNTITLED_POST


def _find_hold(history: list[DocumentSnapshot]) -> DocumentSnapshot | None:
    for txn in history:
        if txn.get("type") == "debit" and is_on_hold(txn.data):
            return txn
    return None


def _already_finalized(candidates: list[DocumentSnapshot], hold: DocumentSnapshot | None) -> bool:
    hold_id = hold.id if hold is not None else None
    return any(txn.id != hold_id and is_finalized_debit(txn.data) for txn in candidates)
