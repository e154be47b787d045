from __future__ import annotations

from typing import Any

import httpx

JOB_ROUTES = {
    "complete_expired_posts": "/maintenance/posts/complete-expired",
    "approve_pending_posts": "/maintenance/posts/approve-pending",
    "unsuspend_users": "/maintenance/users/unsuspend",
}


class MaintenanceClient:
    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def run_job(self, name: str) -> dict[str, Any]:
        route = JOB_ROUTES.get(name)
        if route is None:
            raise ValueError(f"unknown maintenance job: {name}")
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await client.post(f"{self.base_url}{route}")
            response.raise_for_status()
            return response.json()
