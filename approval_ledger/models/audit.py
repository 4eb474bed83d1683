"""
Audit Models for Approval Ledger

Every mutating action in the system leaves one audit entry.
This provides:
1. Complete traceability of who changed what, and when
2. A company-visible history for accountants and above
3. Debugging information when balances look wrong

DESIGN DECISION: Audit logs are append-only. We never update or delete them.
An entry records the attempt; it is written whether or not the user ever
sees the outcome.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from approval_ledger.models.finance import Transaction, utcnow
from approval_ledger.models.user import Actor


class AuditAction(str, Enum):
    """What was done."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    REJECT = "reject"
    LOGIN = "login"
    LOGOUT = "logout"

    @property
    def display_name(self) -> str:
        return {
            AuditAction.CREATE: "Created",
            AuditAction.UPDATE: "Updated",
            AuditAction.DELETE: "Deleted",
            AuditAction.APPROVE: "Approved",
            AuditAction.REJECT: "Rejected",
            AuditAction.LOGIN: "Logged In",
            AuditAction.LOGOUT: "Logged Out",
        }[self]


class AuditEntity(str, Enum):
    """What kind of record it was done to."""
    USER = "user"
    ACCOUNT = "account"
    TRANSACTION = "transaction"
    CATEGORY = "category"
    BUDGET = "budget"
    COMPANY = "company"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


class AuditLog(BaseModel):
    """
    A single audit entry.

    This is the core unit of our audit trail.
    """

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique entry identifier"
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        description="When the action happened (UTC)"
    )

    action: AuditAction
    entity: AuditEntity
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the record acted upon"
    )

    # Who
    user_id: UUID
    user_name: str = ""
    user_email: str = ""
    company_id: UUID

    # What changed (action-specific)
    changes: dict[str, Any] = Field(default_factory=dict)

    # Where from
    ip_address: str = ""
    user_agent: str = ""

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "audit_id": str(self.id),
            "created_at": self.created_at.isoformat(),
            "action": self.action.value,
            "entity": self.entity.value,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "user_id": str(self.user_id),
            "company_id": str(self.company_id),
            "changes": self.changes,
            "ip_address": self.ip_address,
        }


class AuditLogBuilder:
    """
    Helper class to build audit entries with common patterns.

    Usage:
        entry = AuditLogBuilder.for_actor(AuditAction.CREATE, AuditEntity.ACCOUNT, account.id, actor)
        entry = AuditLogBuilder.transaction_approved(txn, actor)
    """

    @staticmethod
    def for_actor(
        action: AuditAction,
        entity: AuditEntity,
        entity_id: Optional[UUID],
        actor: Actor,
        changes: Optional[dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> AuditLog:
        return AuditLog(
            action=action,
            entity=entity,
            entity_id=entity_id,
            user_id=actor.user.id,
            user_name=actor.user.name,
            user_email=actor.user.email,
            company_id=actor.user.company_id,
            changes=changes or {},
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
            created_at=created_at or utcnow(),
        )

    @staticmethod
    def transaction_created(
        txn: Transaction,
        actor: Actor,
        created_at: Optional[datetime] = None,
    ) -> AuditLog:
        return AuditLogBuilder.for_actor(
            AuditAction.CREATE,
            AuditEntity.TRANSACTION,
            txn.id,
            actor,
            changes={
                "type": txn.type.value,
                "amount": str(txn.amount),
                "description": txn.description,
            },
            created_at=created_at,
        )

    @staticmethod
    def transaction_approved(
        txn: Transaction,
        actor: Actor,
        created_at: Optional[datetime] = None,
    ) -> AuditLog:
        return AuditLogBuilder.for_actor(
            AuditAction.APPROVE,
            AuditEntity.TRANSACTION,
            txn.id,
            actor,
            changes={
                "amount": str(txn.amount),
                "type": txn.type.value,
            },
            created_at=created_at,
        )

    @staticmethod
    def transaction_rejected(
        txn: Transaction,
        actor: Actor,
        created_at: Optional[datetime] = None,
    ) -> AuditLog:
        return AuditLogBuilder.for_actor(
            AuditAction.REJECT,
            AuditEntity.TRANSACTION,
            txn.id,
            actor,
            changes={
                "amount": str(txn.amount),
                "reason": txn.rejection_reason or "",
            },
            created_at=created_at,
        )
