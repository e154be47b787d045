from __future__ import annotations

from collections.abc import Mapping


def due_jobs(last_run: Mapping[str, float], now: float, intervals: Mapping[str, float]) -> list[str]:
    """Return job names whose interval has elapsed, in ``intervals`` order.

    ``last_run`` and ``now`` are monotonic clock readings; a job missing from
    ``last_run`` has never run and is due immediately.
    """
    due: list[str] = []
    for name, interval in intervals.items():
        previous = last_run.get(name)
        if previous is None or now - previous >= max(0.0, interval):
            due.append(name)
    return due
