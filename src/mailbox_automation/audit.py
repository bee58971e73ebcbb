"""Audit trail of execution attempts.

Every execution attempt, successful or not, produces exactly one
:class:`AuditRecord`. Recording is best-effort: storage failures are logged
and never interrupt the caller.
"""

import logging

from .models import AuditRecord
from .storage import AuditStore, utc_now

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_LIMIT = 50


class AuditRecorder:
    """
    Append-only audit recorder over an :class:`AuditStore`.

    Attributes:
        store: Audit persistence backend.
    """

    def __init__(self, store: AuditStore) -> None:
        self.store = store

    def record(self, entry: AuditRecord) -> bool:
        """
        Append one audit record with a server-assigned creation time.

        Never raises.

        Args:
            entry: Record to append (``created_at`` is overwritten).

        Returns:
            bool: True if stored, False if storage failed.
        """
        stamped = entry.model_copy(update={"created_at": utc_now()})
        try:
            self.store.append(stamped)
        except Exception as e:
            # Audit failure must never block the primary operation.
            logger.error(
                "Failed to create audit log (user_id=%s, action=%s, status=%s): %s",
                entry.user_id,
                entry.action,
                entry.status.value,
                e,
            )
            return False

        logger.info(
            "Audit log created (user_id=%s, action=%s, mode=%s, status=%s)",
            entry.user_id,
            entry.action,
            entry.mode.value,
            entry.status.value,
        )
        return True

    def list(self, user_id: str, limit: int = DEFAULT_AUDIT_LIMIT) -> list[AuditRecord]:
        """
        Return the most recent records for a user, newest first.

        Never raises; a storage failure yields an empty list.

        Args:
            user_id: User ID.
            limit: Maximum number of records.

        Returns:
            list[AuditRecord]: Records, newest first.
        """
        if limit <= 0:
            return []
        try:
            records = self.store.query(user_id, limit)
        except Exception as e:
            logger.error("Failed to get audit logs (user_id=%s): %s", user_id, e)
            return []
        return sorted(records, key=lambda r: r.created_at or utc_now(), reverse=True)[:limit]
