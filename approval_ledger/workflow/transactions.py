"""
Transaction Lifecycle

The approval state machine:

    pending --approve--> approved   (terminal)
    pending --reject---> rejected   (terminal)

DESIGN DECISION: The pending -> terminal transition is ONE conditional
write: "set status where id = X and company = C and status = pending".
Whoever's write matches wins; everybody else gets InvalidStateError.
Ledger and budget effects run only for the winner, so a transaction can
never be applied twice, however many approvals race.

Approval runs inside store.transaction(). On a store with real units of
work the transition and its effects commit or roll back together. On a
store without them the transition commits first and the effects follow;
if an effect then fails, the transaction stays approved with its effect
missing. That window is logged as `ledger_inconsistency_window` and
surfaced as InternalError. It is not reconciled automatically.

Audit entries are written after the primary operation and can never
fail it (see AuditRecorder).
"""

from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

import structlog

from approval_ledger.audit import AuditRecorder
from approval_ledger.errors import (
    InternalError,
    InvalidStateError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from approval_ledger.models.audit import AuditAction, AuditEntity
from approval_ledger.models.finance import (
    Transaction,
    TransactionInput,
    TransactionStatus,
    TransactionType,
    TransactionUpdate,
)
from approval_ledger.models.roles import (
    ROLE_LEVELS,
    Role,
    can_approve,
    can_submit_expenses,
    has_permission,
)
from approval_ledger.models.user import Actor
from approval_ledger.services.auth import ensure_permission
from approval_ledger.services.runtime import Clock, IdentityGenerator, SystemClock
from approval_ledger.services.storage import Collection, EntityStore
from approval_ledger.validation import InputValidator
from approval_ledger.workflow.budgets import BudgetTracker
from approval_ledger.workflow.ledger import LedgerUpdater


logger = structlog.get_logger(__name__)


class TransactionLifecycle:
    """
    Creates pending transactions and moves them to a terminal state.

    All reads and writes are scoped to the acting user's company. A
    transaction in another company is reported as not found.
    """

    def __init__(
        self,
        store: EntityStore,
        audit: Optional[AuditRecorder] = None,
        ledger: Optional[LedgerUpdater] = None,
        budgets: Optional[BudgetTracker] = None,
        validator: Optional[InputValidator] = None,
        clock: Optional[Clock] = None,
        new_id: Optional[Callable[[], UUID]] = None,
        default_currency: str = "USD",
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._audit = audit or AuditRecorder(store, self._clock)
        self._ledger = ledger or LedgerUpdater(store)
        self._budgets = budgets or BudgetTracker(store)
        self._validator = validator or InputValidator(store)
        self._new_id = new_id or IdentityGenerator()
        self._default_currency = default_currency

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create(self, data: TransactionInput, actor: Actor) -> UUID:
        """
        Persist a new pending transaction.

        Has no ledger or budget effect.

        Returns:
            The new transaction's id

        Raises:
            UnauthorizedError: Role may not submit (holders approve only)
            ValidationError: Input failed validation
            InternalError: Storage failure
        """
        ensure_permission(actor, can_submit_expenses(actor.role), "submit transactions")

        result = await self._validator.validate_transaction(data, actor.company_id)
        if not result.is_valid:
            raise ValidationError(result.summary(), issues=result.issues)

        now = self._clock.now()
        txn = Transaction(
            id=self._new_id(),
            company_id=actor.company_id,
            type=TransactionType(data.type),
            amount=data.amount,
            currency=self._default_currency,
            description=data.description,
            from_account_id=data.from_account_id,
            to_account_id=data.to_account_id,
            category_id=data.category_id,
            status=TransactionStatus.PENDING,
            created_by_id=actor.id,
            created_by_name=actor.user.display_name,
            transaction_date=data.transaction_date or now,
            created_at=now,
            updated_at=now,
        )

        try:
            await self._store.insert(Collection.TRANSACTIONS, txn)
        except Exception as e:
            logger.error("transaction_create_failed", error=str(e), user_id=str(actor.id))
            raise InternalError("Failed to create transaction") from e

        logger.info(
            "transaction_created",
            transaction_id=str(txn.id),
            type=txn.type.value,
            amount=str(txn.amount),
            warnings=result.warnings,
        )
        await self._audit.transaction_created(txn, actor)
        return txn.id

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def _transition(
        self,
        transaction_id: UUID,
        actor: Actor,
        status: TransactionStatus,
        now: datetime,
        reason: Optional[str] = None,
    ) -> Transaction:
        """
        Conditionally move a pending transaction to `status`.

        Raises:
            NotFoundError: No such transaction in the actor's company
            InvalidStateError: The transaction is no longer pending
        """
        set_fields = {
            "status": status,
            "approved_by_id": actor.id,
            "approved_by_name": actor.user.display_name,
            "approved_at": now,
            "updated_at": now,
        }
        if status == TransactionStatus.REJECTED:
            set_fields["rejection_reason"] = reason or ""

        txn = await self._store.find_one_and_update(
            Collection.TRANSACTIONS,
            {
                "id": transaction_id,
                "company_id": actor.company_id,
                "status": TransactionStatus.PENDING,
            },
            set_fields=set_fields,
        )
        if txn is not None:
            return txn

        # Lost the race or never pending; find out which for the caller
        current = await self._store.find_one(
            Collection.TRANSACTIONS,
            {"id": transaction_id, "company_id": actor.company_id},
        )
        if current is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")

        logger.info(
            "transaction_transition_refused",
            transaction_id=str(transaction_id),
            current_status=current.status.value,
            requested_status=status.value,
            user_id=str(actor.id),
        )
        raise InvalidStateError(
            f"Transaction is already {current.status.value} and cannot be {status.value}"
        )

    async def _apply_effects(self, txn: Transaction) -> None:
        await self._ledger.apply(txn)
        if txn.type == TransactionType.EXPENSE and txn.category_id is not None:
            await self._budgets.record_spending(txn.company_id, txn.category_id, txn.amount)

    async def approve(self, transaction_id: UUID, actor: Actor) -> Transaction:
        """
        Approve a pending transaction and apply its ledger effect.

        Returns:
            The transaction as approved

        Raises:
            UnauthorizedError: Role below holder
            NotFoundError: No such transaction in the actor's company
            InvalidStateError: Already approved or rejected
            InternalError: Storage failure
        """
        ensure_permission(actor, can_approve(actor.role), "approve transactions")

        now = self._clock.now()
        txn: Optional[Transaction] = None
        try:
            async with self._store.transaction():
                txn = await self._transition(
                    transaction_id, actor, TransactionStatus.APPROVED, now
                )
                await self._apply_effects(txn)
        except LedgerError:
            raise
        except Exception as e:
            if txn is not None and not self._store.supports_transactions:
                # Approved, but the ledger or budget effect did not land
                logger.error(
                    "ledger_inconsistency_window",
                    transaction_id=str(txn.id),
                    company_id=str(txn.company_id),
                    type=txn.type.value,
                    amount=str(txn.amount),
                    error=str(e),
                )
                await self._audit.record(
                    AuditAction.APPROVE,
                    AuditEntity.TRANSACTION,
                    txn.id,
                    actor,
                    changes={
                        "amount": str(txn.amount),
                        "type": txn.type.value,
                        "effects_applied": False,
                    },
                )
            else:
                logger.error(
                    "transaction_approve_failed",
                    transaction_id=str(transaction_id),
                    rolled_back=txn is not None,
                    error=str(e),
                )
            raise InternalError("Failed to approve transaction") from e

        logger.info(
            "transaction_approved",
            transaction_id=str(txn.id),
            type=txn.type.value,
            amount=str(txn.amount),
            approved_by=str(actor.id),
        )
        await self._audit.transaction_approved(txn, actor)
        return txn

    async def reject(
        self,
        transaction_id: UUID,
        reason: Optional[str],
        actor: Actor,
    ) -> Transaction:
        """
        Reject a pending transaction. Never touches balances or budgets.

        Raises:
            UnauthorizedError: Role below holder
            NotFoundError: No such transaction in the actor's company
            InvalidStateError: Already approved or rejected
            InternalError: Storage failure
        """
        ensure_permission(actor, can_approve(actor.role), "reject transactions")

        now = self._clock.now()
        try:
            txn = await self._transition(
                transaction_id, actor, TransactionStatus.REJECTED, now, reason=reason
            )
        except LedgerError:
            raise
        except Exception as e:
            logger.error(
                "transaction_reject_failed",
                transaction_id=str(transaction_id),
                error=str(e),
            )
            raise InternalError("Failed to reject transaction") from e

        logger.info(
            "transaction_rejected",
            transaction_id=str(txn.id),
            rejected_by=str(actor.id),
        )
        await self._audit.transaction_rejected(txn, actor)
        return txn

    # =========================================================================
    # EDITS
    # =========================================================================

    async def update(
        self,
        transaction_id: UUID,
        fields: TransactionUpdate,
        actor: Actor,
    ) -> Transaction:
        """
        Edit description, amount or date.

        The ledger is NOT re-run: editing the amount of an approved
        transaction leaves balances and budgets as they were.
        """
        ensure_permission(
            actor,
            has_permission(actor.role, ROLE_LEVELS[Role.EMPLOYEE]),
            "edit transactions",
        )

        result = self._validator.validate_transaction_update(fields)
        if not result.is_valid:
            raise ValidationError(result.summary(), issues=result.issues)

        set_fields = fields.model_dump(exclude_none=True)
        set_fields["updated_at"] = self._clock.now()

        try:
            txn = await self._store.find_one_and_update(
                Collection.TRANSACTIONS,
                {"id": transaction_id, "company_id": actor.company_id},
                set_fields=set_fields,
            )
        except Exception as e:
            logger.error("transaction_update_failed", transaction_id=str(transaction_id), error=str(e))
            raise InternalError("Failed to update transaction") from e

        if txn is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")

        if txn.status == TransactionStatus.APPROVED and fields.amount is not None:
            logger.warning(
                "approved_transaction_amount_edited",
                transaction_id=str(txn.id),
                amount=str(txn.amount),
            )

        changes = {
            key: str(value) for key, value in set_fields.items() if key != "updated_at"
        }
        await self._audit.record(
            AuditAction.UPDATE, AuditEntity.TRANSACTION, txn.id, actor, changes=changes
        )
        return txn

    async def delete(self, transaction_id: UUID, actor: Actor) -> None:
        """
        Remove a transaction outright.

        Deleting an approved transaction does not reverse its ledger effect.
        """
        ensure_permission(
            actor,
            has_permission(actor.role, ROLE_LEVELS[Role.EMPLOYEE]),
            "delete transactions",
        )

        try:
            deleted = await self._store.delete_one(
                Collection.TRANSACTIONS,
                {"id": transaction_id, "company_id": actor.company_id},
            )
        except Exception as e:
            logger.error("transaction_delete_failed", transaction_id=str(transaction_id), error=str(e))
            raise InternalError("Failed to delete transaction") from e

        if not deleted:
            raise NotFoundError(f"Transaction {transaction_id} not found")

        logger.info("transaction_deleted", transaction_id=str(transaction_id))
        await self._audit.record(
            AuditAction.DELETE, AuditEntity.TRANSACTION, transaction_id, actor
        )

    async def get(self, transaction_id: UUID, actor: Actor) -> Transaction:
        try:
            txn = await self._store.find_one(
                Collection.TRANSACTIONS,
                {"id": transaction_id, "company_id": actor.company_id},
            )
        except Exception as e:
            logger.error("transaction_get_failed", transaction_id=str(transaction_id), error=str(e))
            raise InternalError("Failed to load transaction") from e
        if txn is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return txn
