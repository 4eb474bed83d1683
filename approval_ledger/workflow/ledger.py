"""
Ledger Updater

Applies the balance effect of an approved transaction:

    income    +amount on the destination account
    expense   -amount on the source account
    transfer  -amount on the source, +amount on the destination

Each leg is an independent additive increment scoped by account id and
company, never a read-modify-write of a cached balance. Approvals of
different transactions against the same account therefore compose.

CRITICAL: apply() is not idempotent. Calling it twice for one transaction
moves the money twice. TransactionLifecycle guarantees it runs only after
winning the pending -> approved transition.

No overdraft rule is enforced here. A resulting negative balance is
logged as `account_overdrawn` and otherwise accepted.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from approval_ledger.models.finance import Account, Transaction, TransactionType
from approval_ledger.services.storage import Collection, EntityStore


logger = structlog.get_logger(__name__)


class LedgerUpdater:
    def __init__(self, store: EntityStore):
        self._store = store

    async def _increment(
        self,
        account_id: UUID,
        company_id: UUID,
        delta: Decimal,
        txn: Transaction,
    ) -> Optional[Account]:
        account = await self._store.find_one_and_update(
            Collection.ACCOUNTS,
            {"id": account_id, "company_id": company_id},
            inc_fields={"balance": delta},
        )
        if account is None:
            # Deleted accounts are soft-deleted, so this is a hard miss
            logger.warning(
                "ledger_account_missing",
                account_id=str(account_id),
                transaction_id=str(txn.id),
                company_id=str(company_id),
            )
            return None

        logger.info(
            "account_balance_updated",
            account_id=str(account_id),
            transaction_id=str(txn.id),
            delta=str(delta),
            balance=str(account.balance),
        )
        if account.balance < 0:
            logger.warning(
                "account_overdrawn",
                account_id=str(account_id),
                transaction_id=str(txn.id),
                balance=str(account.balance),
            )
        return account

    async def apply(self, txn: Transaction) -> list[Account]:
        """
        Apply one transaction's ledger effect.

        A leg whose account is not set is skipped.

        Returns:
            The accounts after their update
        """
        legs: list[tuple[UUID, Decimal]] = []

        if txn.type == TransactionType.INCOME:
            if txn.to_account_id is not None:
                legs.append((txn.to_account_id, txn.amount))
        elif txn.type == TransactionType.EXPENSE:
            if txn.from_account_id is not None:
                legs.append((txn.from_account_id, -txn.amount))
        elif txn.type == TransactionType.TRANSFER:
            if txn.from_account_id is not None:
                legs.append((txn.from_account_id, -txn.amount))
            if txn.to_account_id is not None:
                legs.append((txn.to_account_id, txn.amount))

        if not legs:
            logger.info("ledger_no_effect", transaction_id=str(txn.id), type=txn.type.value)

        updated = []
        for account_id, delta in legs:
            account = await self._increment(account_id, txn.company_id, delta, txn)
            if account is not None:
                updated.append(account)
        return updated
