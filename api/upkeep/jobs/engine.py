"""Generic batched state-transition engine shared by the maintenance jobs.

A run queries a filtered snapshot, keeps the documents whose temporal
predicate holds, stages one update per document through a
:class:`BatchCommitter` and then runs the job's side effects for that
document. A group is committed only after all of its documents ran their
side effects, so a failed group treats every member alike. Documents are
processed strictly in order. Only a failed query or a
failed final flush aborts the run; everything else is collected per document.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace

from upkeep.services.batching import DEFAULT_BATCH_LIMIT, BatchCommitError, BatchCommitter
from upkeep.services.documents import DocumentSnapshot, DocumentStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class JobExecutionError(Exception):
    """Fatal job failure; nothing past the failing step was committed."""

    def __init__(self, job_name: str, user_message: str, cause: Exception) -> None:
        super().__init__(f"{job_name} failed: {cause}")
        self.job_name = job_name
        self.user_message = user_message
        self.cause = cause


@dataclass(frozen=True, slots=True)
class SideEffect:
    name: str
    apply: Callable[[DocumentSnapshot], Awaitable[bool]]
    required: bool = True


@dataclass(frozen=True, slots=True)
class TransitionJob:
    name: str
    collection: str
    filters: Mapping[str, Any]
    is_eligible: Callable[[DocumentSnapshot, datetime], bool]
    build_update: Callable[[DocumentSnapshot], dict[str, Any]]
    count_key: str
    success_message: str
    failure_message: str
    side_effects: Sequence[SideEffect] = ()


@dataclass(slots=True)
class TransitionOutcome:
    doc_id: str
    failed: list[str] = field(default_factory=list)
    degraded: list[str] = field(default_factory=list)


@dataclass(slots=True)
class JobRun:
    job: TransitionJob
    scanned: int = 0
    eligible: int = 0
    count: int = 0
    commits: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    outcomes: list[TransitionOutcome] = field(default_factory=list)

    @property
    def degraded(self) -> list[TransitionOutcome]:
        return [outcome for outcome in self.outcomes if outcome.degraded]

    def to_result(self) -> dict[str, Any]:
        return {
            "success": True,
            self.job.count_key: self.count,
            "errors": list(self.errors) or None,
            "message": self.job.success_message.format(count=self.count),
        }


async def run_transition_job(
    store: DocumentStore,
    job: TransitionJob,
    *,
    now: datetime | None = None,
    batch_limit: int = DEFAULT_BATCH_LIMIT,
) -> JobRun:
    current = now or datetime.now(timezone.utc)
    run = JobRun(job=job)

    with tracer.start_as_current_span(f"job.{job.name}") as span:
        try:
            snapshot = await store.query(job.collection, job.filters)
        except Exception as exc:
            logger.exception("job query failed: job=%s collection=%s", job.name, job.collection)
            raise JobExecutionError(job.name, job.failure_message, exc) from exc

        run.scanned = len(snapshot)
        eligible = [doc for doc in snapshot if _is_eligible(job, doc, current)]
        run.eligible = len(eligible)

        committer = BatchCommitter(store, limit=batch_limit)
        for doc in eligible:
            try:
                committer.enqueue(doc.path, job.build_update(doc), doc.id)
            except Exception as exc:
                logger.warning("transition staging failed: job=%s id=%s error=%s", job.name, doc.id, exc)
                run.errors.append({"id": doc.id, "error": str(exc)})
                continue

            run.count += 1
            run.outcomes.append(await _apply_side_effects(job, doc, run.errors))

            # Every document of a group is staged and processed before the group commits.
            try:
                await committer.commit_if_full()
            except BatchCommitError as exc:
                run.count -= len(exc.doc_ids)
                run.errors.extend({"id": doc_id, "error": str(exc.cause)} for doc_id in exc.doc_ids)

        try:
            await committer.flush()
        except BatchCommitError as exc:
            raise JobExecutionError(job.name, job.failure_message, exc.cause) from exc
        run.commits = committer.commits

        span.set_attribute("job.scanned", run.scanned)
        span.set_attribute("job.eligible", run.eligible)
        span.set_attribute("job.count", run.count)
        span.set_attribute("job.errors", len(run.errors))
        span.set_attribute("job.degraded", len(run.degraded))
        span.set_attribute("job.commits", run.commits)

    logger.info(
        "job finished: job=%s scanned=%s eligible=%s count=%s errors=%s degraded=%s commits=%s",
        job.name,
        run.scanned,
        run.eligible,
        run.count,
        len(run.errors),
        len(run.degraded),
        run.commits,
    )
    return run


def _is_eligible(job: TransitionJob, doc: DocumentSnapshot, now: datetime) -> bool:
    try:
        return bool(job.is_eligible(doc, now))
    except Exception:
        logger.debug("eligibility check skipped document: job=%s id=%s", job.name, doc.id, exc_info=True)
        return False


async def _apply_side_effects(
    job: TransitionJob,
    doc: DocumentSnapshot,
    errors: list[dict[str, str]],
) -> TransitionOutcome:
    outcome = TransitionOutcome(doc_id=doc.id)
    for effect in job.side_effects:
        reason = f"{effect.name} failed"
        try:
            applied = await effect.apply(doc)
        except Exception as exc:
            logger.exception("side effect raised: job=%s id=%s effect=%s", job.name, doc.id, effect.name)
            applied = False
            reason = str(exc) or reason

        if applied:
            continue
        if effect.required:
            outcome.failed.append(effect.name)
            errors.append({"id": doc.id, "error": reason})
        else:
            outcome.degraded.append(effect.name)
            logger.warning("side effect degraded: job=%s id=%s effect=%s", job.name, doc.id, effect.name)
    return outcome
