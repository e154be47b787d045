from __future__ import annotations

import logging
from typing import Any, Mapping

from upkeep.services.documents import DocumentStore, StoreError, WriteBatch

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 500


class BatchCommitError(StoreError):
    """Raised when a rolled-over group fails to commit."""

    def __init__(self, doc_ids: list[str], cause: Exception) -> None:
        super().__init__(f"batch commit failed for {len(doc_ids)} document(s): {cause}")
        self.doc_ids = doc_ids
        self.cause = cause


class BatchCommitter:
    """Stages single-document updates and commits them in bounded atomic groups."""

    def __init__(self, store: DocumentStore, limit: int = DEFAULT_BATCH_LIMIT) -> None:
        self._store = store
        self.limit = max(1, limit)
        self.commits = 0
        self._batch: WriteBatch = store.batch()
        self._doc_ids: list[str] = []

    def enqueue(self, path: str, fields: Mapping[str, Any], doc_id: str) -> None:
        self._batch.update(path, fields)
        self._doc_ids.append(doc_id)

    @property
    def full(self) -> bool:
        return len(self._doc_ids) >= self.limit

    async def commit_if_full(self) -> None:
        """Commit the current group once it holds ``limit`` staged updates."""
        if self.full:
            await self._commit_group()

    async def flush(self) -> None:
        if not self._doc_ids:
            return
        await self._commit_group()

    async def _commit_group(self) -> None:
        batch, doc_ids = self._batch, self._doc_ids
        # A fresh group starts regardless of the outcome; failed groups are not retried.
        self._batch = self._store.batch()
        self._doc_ids = []
        try:
            await batch.commit()
        except Exception as exc:
            logger.error("batch commit failed: size=%s error=%s", len(doc_ids), exc)
            raise BatchCommitError(doc_ids, exc) from exc
        self.commits += 1
        logger.debug("batch committed: size=%s total_commits=%s", len(doc_ids), self.commits)
