from __future__ import annotations

import asyncio
from typing import Any

import httpx

from upkeep_worker import main as worker_main


class FakeMaintenanceClient:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.calls: list[str] = []
        self.failing = failing or set()

    async def run_job(self, name: str) -> dict[str, Any]:
        self.calls.append(name)
        if name in self.failing:
            request = httpx.Request("POST", f"http://api.internal/{name}")
            response = httpx.Response(status_code=500, json={"detail": "boom"}, request=request)
            raise httpx.HTTPStatusError("server error", request=request, response=response)
        return {"success": True, "completedCount": 0, "errors": None, "message": "ok"}


def test_run_due_jobs_runs_each_due_job_once() -> None:
    client = FakeMaintenanceClient()
    last_run: dict[str, float] = {}
    intervals = {"complete_expired_posts": 3600.0, "unsuspend_users": 900.0}

    ran = asyncio.run(worker_main.run_due_jobs(client, last_run, intervals))

    assert ran == 2
    assert client.calls == ["complete_expired_posts", "unsuspend_users"]
    assert set(last_run) == {"complete_expired_posts", "unsuspend_users"}

    assert asyncio.run(worker_main.run_due_jobs(client, last_run, intervals)) == 0


def test_failed_job_waits_for_retry_delay() -> None:
    client = FakeMaintenanceClient(failing={"approve_pending_posts"})
    last_run: dict[str, float] = {}
    intervals = {"approve_pending_posts": 3600.0, "unsuspend_users": 900.0}

    ran = asyncio.run(worker_main.run_due_jobs(client, last_run, intervals, retry_seconds=120.0))

    assert ran == 1
    assert client.calls == ["approve_pending_posts", "unsuspend_users"]

    # Still inside the retry delay.
    assert asyncio.run(worker_main.run_due_jobs(client, last_run, intervals, retry_seconds=120.0)) == 0
    assert client.calls == ["approve_pending_posts", "unsuspend_users"]

    last_run["approve_pending_posts"] -= 120.0
    asyncio.run(worker_main.run_due_jobs(client, last_run, intervals, retry_seconds=120.0))
    assert client.calls == ["approve_pending_posts", "unsuspend_users", "approve_pending_posts"]
