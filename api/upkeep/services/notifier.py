from __future__ import annotations

import logging

from upkeep.schemas.records import LogEntryRecord, NotificationRecord
from upkeep.services.documents import SERVER_TIMESTAMP, DocumentStore

logger = logging.getLogger(__name__)

NOTIFICATIONS_COLLECTION = "notifications"
LOGS_COLLECTION = "logs"


class NotifierAndAuditor:
    """Best-effort appends to the notification and audit collections.

    Both writes happen after the transition they describe has been staged,
    so a failure is logged and reported as ``False`` instead of raised.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def notify(self, notification: NotificationRecord) -> bool:
        try:
            await self._store.add(
                NOTIFICATIONS_COLLECTION,
                {**notification.to_document(), "createdAt": SERVER_TIMESTAMP},
            )
        except Exception:
            logger.exception(
                "notification write failed: user_id=%s type=%s",
                notification.user_id,
                notification.type,
            )
            return False
        return True

    async def audit(self, entry: LogEntryRecord) -> bool:
        try:
            await self._store.add(LOGS_COLLECTION, {**entry.to_document(), "createdAt": SERVER_TIMESTAMP})
        except Exception:
            logger.exception(
                "audit log write failed: action=%s entity_id=%s",
                entry.action,
                entry.entity_id,
            )
            return False
        return True
