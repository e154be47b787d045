from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from upkeep.core.config import Settings, get_settings
from upkeep.jobs.engine import SideEffect, TransitionJob, run_transition_job
from upkeep.jobs.temporal import has_duration_elapsed, has_passed, is_within_days, to_datetime
from upkeep.schemas.records import LogEntryRecord, NotificationRecord
from upkeep.services.documents import DELETE_FIELD, SERVER_TIMESTAMP, DocumentSnapshot, DocumentStore
from upkeep.services.ledger import UNTITLED_POST, LedgerAdjuster
from upkeep.services.notifier import NotifierAndAuditor


def expire_posts_job(tz: tzinfo) -> TransitionJob:
    return TransitionJob(
        name="complete_expired_posts",
        collection="posts",
        filters={"status": "active", "isDraft": False},
        is_eligible=lambda doc, now: has_passed(doc.get("eventEndDate"), now, tz),
        build_update=lambda _: {"status": "completed", "completedAt": SERVER_TIMESTAMP},
        count_key="completedCount",
        success_message="Successfully completed {count} expired post(s)",
        failure_message="An error occurred while completing expired posts",
    )


def approve_posts_job(store: DocumentStore, *, fee_credits: int, window_days: int, tz: tzinfo) -> TransitionJob:
    ledger = LedgerAdjuster(store)
    notifier = NotifierAndAuditor(store)

    async def deduct_fee(doc: DocumentSnapshot) -> bool:
        owner_id = doc.get("ownerId")
        if not owner_id:
            raise ValueError("post has no ownerId")
        return await ledger.deduct(str(owner_id), doc.id, fee_credits)

    async def notify_owner(doc: DocumentSnapshot) -> bool:
        owner_id = doc.get("ownerId")
        if not owner_id:
            return False
        title = doc.get("title") or UNTITLED_POST
        return await notifier.notify(
            NotificationRecord(
                user_id=str(owner_id),
                type="post_approved",
                title="Post approved",
                message=f'Your post "{title}" has been approved and is now live.',
                reference_id=doc.id,
            )
        )

    async def audit_approval(doc: DocumentSnapshot) -> bool:
        return await notifier.audit(
            LogEntryRecord(
                action="post_auto_approved",
                entity_type="post",
                entity_id=doc.id,
                details={
                    "fromStatus": "pending",
                    "toStatus": "active",
                    "ownerId": doc.get("ownerId"),
                    "feeCredits": fee_credits,
                },
            )
        )

    return TransitionJob(
        name="approve_pending_posts",
        collection="posts",
        filters={"status": "pending", "isDraft": False},
        is_eligible=lambda doc, now: is_within_days(doc.get("eventStartDate"), now, window_days, tz),
        build_update=lambda _: {"status": "active", "approvedAt": SERVER_TIMESTAMP},
        count_key="approvedCount",
        success_message="Successfully approved {count} pending post(s)",
        failure_message="An error occurred while approving pending posts",
        side_effects=(
            SideEffect("credit deduction", deduct_fee),
            SideEffect("owner notification", notify_owner, required=False),
            SideEffect("audit log", audit_approval, required=False),
        ),
    )


def unsuspend_users_job(store: DocumentStore) -> TransitionJob:
    notifier = NotifierAndAuditor(store)

    async def notify_user(doc: DocumentSnapshot) -> bool:
        return await notifier.notify(
            NotificationRecord(
                user_id=doc.id,
                type="account_unsuspended",
                title="Account reinstated",
                message="Your suspension period has ended and your account is active again.",
            )
        )

    async def audit_unsuspension(doc: DocumentSnapshot) -> bool:
        suspended_at = to_datetime(doc.get("suspendedAt"))
        return await notifier.audit(
            LogEntryRecord(
                action="user_auto_unsuspended",
                entity_type="user",
                entity_id=doc.id,
                details={
                    "suspendedAt": suspended_at.isoformat() if suspended_at else None,
                    "suspensionDuration": doc.get("suspensionDuration"),
                    "suspensionReason": doc.get("suspensionReason"),
                },
            )
        )

    return TransitionJob(
        name="unsuspend_users",
        collection="users",
        filters={"status": "Suspended", "isActive": False},
        is_eligible=lambda doc, now: has_duration_elapsed(
            doc.get("suspendedAt"),
            doc.get("suspensionDuration"),
            now,
        ),
        build_update=lambda _: {
            "status": "Active",
            "isActive": True,
            "suspendedAt": DELETE_FIELD,
            "suspensionReason": DELETE_FIELD,
            "suspensionDuration": DELETE_FIELD,
        },
        count_key="unsuspendedCount",
        success_message="Successfully unsuspended {count} user(s)",
        failure_message="An error occurred while unsuspending users",
        side_effects=(
            SideEffect("user notification", notify_user, required=False),
            SideEffect("audit log", audit_unsuspension, required=False),
        ),
    )


async def complete_expired_posts(
    store: DocumentStore,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    settings = settings or get_settings()
    job = expire_posts_job(ZoneInfo(settings.calendar_timezone))
    run = await run_transition_job(store, job, now=now, batch_limit=settings.batch_limit)
    return run.to_result()


async def approve_pending_posts(
    store: DocumentStore,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    settings = settings or get_settings()
    job = approve_posts_job(
        store,
        fee_credits=settings.approval_fee_credits,
        window_days=settings.approval_window_days,
        tz=ZoneInfo(settings.calendar_timezone),
    )
    run = await run_transition_job(store, job, now=now, batch_limit=settings.batch_limit)
    return run.to_result()


async def unsuspend_users(
    store: DocumentStore,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    settings = settings or get_settings()
    run = await run_transition_job(store, unsuspend_users_job(store), now=now, batch_limit=settings.batch_limit)
    return run.to_result()
