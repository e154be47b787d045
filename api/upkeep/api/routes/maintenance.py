from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status as http_status

from upkeep.jobs.engine import JobExecutionError
from upkeep.jobs.transitions import approve_pending_posts, complete_expired_posts, unsuspend_users
from upkeep.schemas.maintenance import (
    ApprovedPostsOut,
    CompletedPostsOut,
    InternalErrorOut,
    UnsuspendedUsersOut,
)
from upkeep.services.documents import DocumentStore, StoreUnavailableError
from upkeep.services.repository import get_store

router = APIRouter()


@router.post("/posts/complete-expired", response_model=CompletedPostsOut)
async def run_complete_expired_posts(store=Depends(get_store)) -> CompletedPostsOut:
    return CompletedPostsOut(**await _run_job(complete_expired_posts, store))


@router.post("/posts/approve-pending", response_model=ApprovedPostsOut)
async def run_approve_pending_posts(store=Depends(get_store)) -> ApprovedPostsOut:
    return ApprovedPostsOut(**await _run_job(approve_pending_posts, store))


@router.post("/users/unsuspend", response_model=UnsuspendedUsersOut)
async def run_unsuspend_users(store=Depends(get_store)) -> UnsuspendedUsersOut:
    return UnsuspendedUsersOut(**await _run_job(unsuspend_users, store))


async def _run_job(
    job: Callable[[DocumentStore], Awaitable[dict[str, Any]]],
    store: DocumentStore,
) -> dict[str, Any]:
    try:
        return await job(store)
    except JobExecutionError as exc:
        if isinstance(exc.cause, StoreUnavailableError):
            raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc.cause)) from exc
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=InternalErrorOut(message=exc.user_message, details=str(exc.cause)).model_dump(),
        ) from exc
