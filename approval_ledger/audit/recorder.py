"""
Audit Recorder

DESIGN DECISION: Every mutating action in the system leaves exactly one
audit entry. This provides:
1. Complete traceability of who changed what, and when
2. A company-visible history for accountants and above
3. Debugging capability when balances look wrong

The recorder:
- Always logs locally first, so the entry exists even if storage is down
- Gracefully handles failures (never raises into the primary operation)
- Is append-only; nothing in the package updates or deletes entries
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog

from approval_ledger.models.audit import (
    AuditAction,
    AuditEntity,
    AuditLog,
    AuditLogBuilder,
)
from approval_ledger.models.finance import Transaction
from approval_ledger.models.user import Actor
from approval_ledger.services.runtime import Clock, SystemClock
from approval_ledger.services.storage import Collection, EntityStore


class AuditRecorder:
    """
    Central audit service.

    Records entries both to:
    1. Structured local log (for debugging)
    2. The entity store (for persistence and the audit trail view)
    """

    def __init__(
        self,
        store: Optional[EntityStore] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize audit recorder.

        Args:
            store: Storage backend for persistence.
                   If None, only logs locally.
            clock: Source of entry timestamps
        """
        self._store = store
        self._clock = clock or SystemClock()
        self._logger = structlog.get_logger(__name__)

    async def append(self, entry: AuditLog) -> bool:
        """
        Record a prepared entry.

        Always logs locally. Persists to storage if available.

        Returns True if the storage write succeeded (or no storage configured).
        """
        self._logger.info("audit_entry", **entry.to_log_dict())

        if self._store is None:
            return True

        try:
            await self._store.insert(Collection.AUDIT_LOGS, entry)
            return True
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                error_type=type(e).__name__,
                audit_id=str(entry.id),
                action=entry.action.value,
                entity=entry.entity.value,
            )
            return False

    async def record(
        self,
        action: AuditAction,
        entity: AuditEntity,
        entity_id: Optional[UUID],
        actor: Actor,
        changes: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Build an entry for `actor` and record it."""
        entry = AuditLogBuilder.for_actor(
            action,
            entity,
            entity_id,
            actor,
            changes=changes,
            created_at=self._now(),
        )
        return await self.append(entry)

    def _now(self) -> datetime:
        return self._clock.now()

    # =========================================================================
    # TRANSACTION LIFECYCLE SHORTCUTS
    # =========================================================================

    async def transaction_created(self, txn: Transaction, actor: Actor) -> bool:
        return await self.append(
            AuditLogBuilder.transaction_created(txn, actor, created_at=self._now())
        )

    async def transaction_approved(self, txn: Transaction, actor: Actor) -> bool:
        return await self.append(
            AuditLogBuilder.transaction_approved(txn, actor, created_at=self._now())
        )

    async def transaction_rejected(self, txn: Transaction, actor: Actor) -> bool:
        return await self.append(
            AuditLogBuilder.transaction_rejected(txn, actor, created_at=self._now())
        )
