from __future__ import annotations

import asyncio
import logging
import random
import time

import httpx
from opentelemetry import trace

from upkeep_worker.core.config import get_settings
from upkeep_worker.core.telemetry import (
    configure_worker_logging,
    record_job_result,
    setup_worker_telemetry,
    shutdown_worker_telemetry,
)
from upkeep_worker.jobs.schedule import due_jobs
from upkeep_worker.services.maintenance_client import MaintenanceClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_due_jobs(
    client: MaintenanceClient,
    last_run: dict[str, float],
    intervals: dict[str, float],
    retry_seconds: float = 300.0,
) -> int:
    """Trigger every due job once, in order; returns how many ran.

    A failed job becomes due again after ``retry_seconds``, or after its own
    interval when that is shorter.
    """
    ran = 0
    for name in due_jobs(last_run, time.monotonic(), intervals):
        with tracer.start_as_current_span("worker.run_job") as span:
            try:
                result = await client.run_job(name)
            except httpx.HTTPStatusError as exc:
                # The API reports fatal job failures as 5xx.
                logger.error(
                    "maintenance job failed: job=%s status=%s body=%s",
                    name,
                    exc.response.status_code,
                    exc.response.text,
                )
                interval = intervals[name]
                last_run[name] = time.monotonic() - interval + min(retry_seconds, interval)
                continue
            record_job_result(span, name, result)
        last_run[name] = time.monotonic()
        ran += 1
        errors = result.get("errors") or []
        if errors:
            logger.warning("maintenance job finished with errors: job=%s errors=%s", name, len(errors))
        logger.info("maintenance job finished: job=%s message=%s", name, result.get("message"))
    return ran


async def run_worker() -> None:
    settings = get_settings()
    configure_worker_logging(settings.otel_log_correlation)
    telemetry_runtime = setup_worker_telemetry(settings)
    client = MaintenanceClient(
        base_url=settings.api_base_url,
        timeout_seconds=settings.request_timeout_seconds,
    )
    intervals = settings.job_intervals()
    last_run: dict[str, float] = {}
    backoff = settings.poll_interval_seconds

    try:
        while True:
            try:
                with tracer.start_as_current_span("worker.poll_cycle"):
                    await run_due_jobs(client, last_run, intervals, settings.job_retry_seconds)
                backoff = settings.poll_interval_seconds
                await asyncio.sleep(settings.poll_interval_seconds)
            except Exception as exc:  # pragma: no cover - bootstrap robustness
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        shutdown_worker_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
