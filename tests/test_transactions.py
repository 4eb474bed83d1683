"""
Tests for the transaction lifecycle.

Covers creation, the pending -> approved/rejected state machine, its
ledger and budget effects, racing approvals, failure handling around
the unit of work, and post-approval edits.
"""

import asyncio
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from structlog.testing import capture_logs

from approval_ledger.config import AppSettings
from approval_ledger.errors import (
    InternalError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from approval_ledger.models import (
    AuditAction,
    CategoryType,
    Role,
    TransactionInput,
    TransactionStatus,
    TransactionType,
    TransactionUpdate,
)
from approval_ledger.orchestrator import create_app_components
from approval_ledger.services.storage import (
    Collection,
    EntityStore,
    InMemoryEntityStore,
    StorageError,
)

from conftest import NOW, Seeder


class InterleavingStore(InMemoryEntityStore):
    """Yields to the event loop before every conditional update."""

    async def find_one_and_update(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().find_one_and_update(*args, **kwargs)


class BudgetWriteFailure(InMemoryEntityStore):
    async def update_many(self, collection, filter, set_fields=None, inc_fields=None):
        if collection == Collection.BUDGETS:
            raise StorageError("budgets worksheet unavailable")
        return await super().update_many(collection, filter, set_fields, inc_fields)


class NonTransactionalBudgetWriteFailure(BudgetWriteFailure):
    """Same failure on a store whose writes commit one by one."""

    supports_transactions = False
    transaction = EntityStore.transaction


class AuditWriteFailure(InMemoryEntityStore):
    async def insert(self, collection, entity):
        if collection == Collection.AUDIT_LOGS:
            raise StorageError("audit worksheet full")
        await super().insert(collection, entity)


def _components(store, clock):
    return create_app_components(
        store=store,
        clock=clock,
        app_settings=AppSettings(),
        configure_logs=False,
    )


async def _audit_actions(store, entity_id) -> list[AuditAction]:
    entries = await store.find(Collection.AUDIT_LOGS, {"entity_id": entity_id})
    return [entry.action for entry in entries]


async def _balance(store, account_id) -> Decimal:
    return (await store.find_one(Collection.ACCOUNTS, {"id": account_id})).balance


class TestCreate:
    """Tests for submitting transactions."""

    @pytest.mark.asyncio
    async def test_employee_creates_pending_expense(self, app, store, ledger_setup, actors, make_expense):
        account, category, _ = ledger_setup
        employee = actors[Role.EMPLOYEE]

        txn_id = await app.transactions.create(make_expense("30", account.id, category.id), employee)

        txn = await store.find_one(Collection.TRANSACTIONS, {"id": txn_id})
        assert txn.status == TransactionStatus.PENDING
        assert txn.created_by_id == employee.id
        assert txn.created_by_name == employee.user.name
        assert txn.currency == "USD"
        assert txn.transaction_date == NOW
        assert txn.approved_by_id is None
        assert await _balance(store, account.id) == Decimal("100")
        assert await _audit_actions(store, txn_id) == [AuditAction.CREATE]

    @pytest.mark.asyncio
    async def test_explicit_transaction_date_kept(self, app, store, seed, actors):
        account = await seed.account()
        when = datetime(2025, 1, 2, tzinfo=timezone.utc)

        txn_id = await app.transactions.create(
            TransactionInput(type="income", amount=Decimal("10"), to_account_id=account.id, transaction_date=when),
            actors[Role.ACCOUNTANT],
        )

        assert (await store.find_one(Collection.TRANSACTIONS, {"id": txn_id})).transaction_date == when

    @pytest.mark.asyncio
    async def test_holder_cannot_submit(self, app, store, ledger_setup, actors, make_expense):
        account, _, _ = ledger_setup

        with pytest.raises(UnauthorizedError):
            await app.transactions.create(make_expense("30", account.id), actors[Role.HOLDER])

        assert await store.count(Collection.TRANSACTIONS, {}) == 0
        assert await store.count(Collection.AUDIT_LOGS, {}) == 0

    @pytest.mark.asyncio
    async def test_invalid_amount_rejected(self, app, store, ledger_setup, actors, make_expense):
        account, _, _ = ledger_setup

        with pytest.raises(ValidationError) as exc_info:
            await app.transactions.create(make_expense("0", account.id), actors[Role.EMPLOYEE])

        assert [issue.field for issue in exc_info.value.issues] == ["amount"]
        assert await store.count(Collection.TRANSACTIONS, {}) == 0

    @pytest.mark.asyncio
    async def test_category_type_must_match(self, app, seed, ledger_setup, actors, make_expense):
        account, _, _ = ledger_setup
        sales = await seed.category(name="Sales", type=CategoryType.INCOME)

        with pytest.raises(ValidationError):
            await app.transactions.create(make_expense("30", account.id, sales.id), actors[Role.EMPLOYEE])

    @pytest.mark.asyncio
    async def test_foreign_account_reported_missing(self, app, seed, actors, other_company_id, make_expense):
        foreign = await seed.account(company_id=other_company_id)

        with pytest.raises(ValidationError) as exc_info:
            await app.transactions.create(make_expense("30", foreign.id), actors[Role.EMPLOYEE])

        assert exc_info.value.issues[0].issue_type == "not_found"


class TestApprove:
    """Tests for approval and its ledger effects."""

    @pytest.mark.asyncio
    async def test_expense_approval_debits_account(self, app, store, seed, ledger_setup, actors):
        account, _, _ = ledger_setup
        holder = actors[Role.HOLDER]
        txn = await seed.pending(TransactionType.EXPENSE, "30", actors[Role.EMPLOYEE], from_account_id=account.id)

        approved = await app.transactions.approve(txn.id, holder)

        assert approved.status == TransactionStatus.APPROVED
        assert approved.approved_by_id == holder.id
        assert approved.approved_by_name == holder.user.name
        assert approved.approved_at == NOW
        assert await _balance(store, account.id) == Decimal("70")

    @pytest.mark.asyncio
    async def test_income_approval_credits_account(self, app, store, seed, actors):
        account = await seed.account(balance="0")
        txn = await seed.pending(TransactionType.INCOME, "500", actors[Role.EMPLOYEE], to_account_id=account.id)

        await app.transactions.approve(txn.id, actors[Role.HOLDER])

        assert await _balance(store, account.id) == Decimal("500")
        entries = await store.find(Collection.AUDIT_LOGS, {"entity_id": txn.id})
        assert [entry.action for entry in entries] == [AuditAction.APPROVE]
        assert entries[0].changes == {"amount": "500", "type": "income"}
        assert entries[0].user_id == actors[Role.HOLDER].id

    @pytest.mark.asyncio
    async def test_expense_approval_consumes_budget(self, app, store, seed, ledger_setup, actors):
        account, category, budget = ledger_setup
        txn = await seed.pending(
            TransactionType.EXPENSE, "75", actors[Role.EMPLOYEE],
            from_account_id=account.id, category_id=category.id,
        )

        await app.transactions.approve(txn.id, actors[Role.MANAGER])

        stored = await store.find_one(Collection.BUDGETS, {"id": budget.id})
        assert stored.spent == Decimal("75")
        assert stored.remaining == Decimal("25")
        assert stored.utilization == 75.0
        assert await _balance(store, account.id) == Decimal("25")

    @pytest.mark.asyncio
    async def test_transfer_never_consumes_budget(self, app, store, seed, ledger_setup, actors):
        source, category, budget = ledger_setup
        target = await seed.account(name="Savings")
        txn = await seed.pending(
            TransactionType.TRANSFER, "40", actors[Role.EMPLOYEE],
            from_account_id=source.id, to_account_id=target.id, category_id=category.id,
        )

        await app.transactions.approve(txn.id, actors[Role.HOLDER])

        assert await _balance(store, source.id) == Decimal("60")
        assert await _balance(store, target.id) == Decimal("40")
        assert (await store.find_one(Collection.BUDGETS, {"id": budget.id})).spent == Decimal("0")

    @pytest.mark.asyncio
    async def test_double_approve_is_refused(self, app, store, seed, ledger_setup, actors):
        """Test that the second approval changes nothing."""
        account, _, _ = ledger_setup
        txn = await seed.pending(TransactionType.EXPENSE, "30", actors[Role.EMPLOYEE], from_account_id=account.id)
        await app.transactions.approve(txn.id, actors[Role.HOLDER])

        with pytest.raises(InvalidStateError):
            await app.transactions.approve(txn.id, actors[Role.ADMIN])

        stored = await store.find_one(Collection.TRANSACTIONS, {"id": txn.id})
        assert stored.approved_by_id == actors[Role.HOLDER].id
        assert await _balance(store, account.id) == Decimal("70")
        assert await _audit_actions(store, txn.id) == [AuditAction.APPROVE]

    @pytest.mark.asyncio
    async def test_rejected_cannot_be_approved(self, app, store, seed, ledger_setup, actors):
        account, _, _ = ledger_setup
        txn = await seed.pending(TransactionType.EXPENSE, "30", actors[Role.EMPLOYEE], from_account_id=account.id)
        await app.transactions.reject(txn.id, "Missing receipt", actors[Role.HOLDER])

        with pytest.raises(InvalidStateError):
            await app.transactions.approve(txn.id, actors[Role.HOLDER])

        assert await _balance(store, account.id) == Decimal("100")

    @pytest.mark.asyncio
    async def test_employee_cannot_approve(self, app, store, seed, ledger_setup, actors):
        account, _, _ = ledger_setup
        txn = await seed.pending(TransactionType.EXPENSE, "30", actors[Role.EMPLOYEE], from_account_id=account.id)

        with pytest.raises(UnauthorizedError):
            await app.transactions.approve(txn.id, actors[Role.EMPLOYEE])

        assert (await store.find_one(Collection.TRANSACTIONS, {"id": txn.id})).is_pending
        assert await _audit_actions(store, txn.id) == []

    @pytest.mark.asyncio
    async def test_other_company_sees_not_found(self, app, store, seed, ledger_setup, actors, outsider):
        """Test that a foreign approver cannot tell the transaction exists."""
        account, _, _ = ledger_setup
        txn = await seed.pending(TransactionType.EXPENSE, "30", actors[Role.EMPLOYEE], from_account_id=account.id)

        with pytest.raises(NotFoundError):
            await app.transactions.approve(txn.id, outsider)
        with pytest.raises(NotFoundError):
            await app.transactions.reject(txn.id, "no", outsider)

        assert (await store.find_one(Collection.TRANSACTIONS, {"id": txn.id})).is_pending
        assert await _balance(store, account.id) == Decimal("100")

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, app, actors):
        with pytest.raises(NotFoundError):
            await app.transactions.approve(uuid4(), actors[Role.HOLDER])


class TestConcurrentApproval:
    """Tests for racing approvals of one transaction."""

    @pytest.mark.asyncio
    async def test_exactly_one_approval_wins(self, clock, company_id, actors):
        store = InterleavingStore()
        seed = Seeder(store, company_id)
        app = _components(store, clock)
        account = await seed.account(balance="100")
        txn = await seed.pending(TransactionType.EXPENSE, "30", actors[Role.EMPLOYEE], from_account_id=account.id)

        results = await asyncio.gather(
            app.transactions.approve(txn.id, actors[Role.HOLDER]),
            app.transactions.approve(txn.id, actors[Role.MANAGER]),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], InvalidStateError)
        assert await _balance(store, account.id) == Decimal("70")
        assert await _audit_actions(store, txn.id) == [AuditAction.APPROVE]

    @pytest.mark.asyncio
    async def test_approve_and_reject_race(self, clock, company_id, actors):
        store = InterleavingStore()
        seed = Seeder(store, company_id)
        app = _components(store, clock)
        account = await seed.account(balance="100")
        txn = await seed.pending(TransactionType.EXPENSE, "30", actors[Role.EMPLOYEE], from_account_id=account.id)

        results = await asyncio.gather(
            app.transactions.reject(txn.id, "Too expensive", actors[Role.ADMIN]),
            app.transactions.approve(txn.id, actors[Role.HOLDER]),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, InvalidStateError)) == 1
        stored = await store.find_one(Collection.TRANSACTIONS, {"id": txn.id})
        expected = Decimal("70") if stored.status == TransactionStatus.APPROVED else Decimal("100")
        assert await _balance(store, account.id) == expected


class TestApprovalFailures:
    """Tests for storage failures after the transition."""

    @pytest.mark.asyncio
    async def test_unit_of_work_rolls_back(self, clock, company_id, actors):
        """Test that a failed budget write undoes the transition and the debit."""
        store = BudgetWriteFailure()
        seed = Seeder(store, company_id)
        app = _components(store, clock)
        account = await seed.account(balance="100")
        category = await seed.category()
        await seed.budget(category.id)
        txn = await seed.pending(
            TransactionType.EXPENSE, "75", actors[Role.EMPLOYEE],
            from_account_id=account.id, category_id=category.id,
        )

        with capture_logs() as logs:
            with pytest.raises(InternalError):
                await app.transactions.approve(txn.id, actors[Role.HOLDER])

        assert (await store.find_one(Collection.TRANSACTIONS, {"id": txn.id})).is_pending
        assert await _balance(store, account.id) == Decimal("100")
        assert await _audit_actions(store, txn.id) == []
        failed = [log for log in logs if log["event"] == "transaction_approve_failed"]
        assert failed[0]["rolled_back"] is True

    @pytest.mark.asyncio
    async def test_rolled_back_approval_can_be_retried(self, clock, company_id, actors):
        store = BudgetWriteFailure()
        seed = Seeder(store, company_id)
        app = _components(store, clock)
        account = await seed.account(balance="100")
        category = await seed.category()
        await seed.budget(category.id)
        txn = await seed.pending(
            TransactionType.EXPENSE, "75", actors[Role.EMPLOYEE],
            from_account_id=account.id, category_id=category.id,
        )

        with pytest.raises(InternalError):
            await app.transactions.approve(txn.id, actors[Role.HOLDER])
        # Uncategorized, the approval no longer touches budgets
        await store.update_one(Collection.TRANSACTIONS, {"id": txn.id}, set_fields={"category_id": None})

        await app.transactions.approve(txn.id, actors[Role.HOLDER])

        assert await _balance(store, account.id) == Decimal("25")

    @pytest.mark.asyncio
    async def test_without_units_of_work_window_is_logged(self, clock, company_id, actors):
        """Test the approved-but-unapplied outcome on a store without units of work."""
        store = NonTransactionalBudgetWriteFailure()
        seed = Seeder(store, company_id)
        app = _components(store, clock)
        account = await seed.account(balance="100")
        category = await seed.category()
        budget = await seed.budget(category.id)
        txn = await seed.pending(
            TransactionType.EXPENSE, "75", actors[Role.EMPLOYEE],
            from_account_id=account.id, category_id=category.id,
        )

        with capture_logs() as logs:
            with pytest.raises(InternalError):
                await app.transactions.approve(txn.id, actors[Role.HOLDER])

        assert (await store.find_one(Collection.TRANSACTIONS, {"id": txn.id})).is_approved
        assert await _balance(store, account.id) == Decimal("25")
        assert (await store.find_one(Collection.BUDGETS, {"id": budget.id})).spent == Decimal("0")
        assert "ledger_inconsistency_window" in [log["event"] for log in logs]

        entries = await store.find(Collection.AUDIT_LOGS, {"entity_id": txn.id})
        assert [entry.action for entry in entries] == [AuditAction.APPROVE]
        assert entries[0].changes["effects_applied"] is False

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_approval(self, clock, company_id, actors):
        store = AuditWriteFailure()
        seed = Seeder(store, company_id)
        app = _components(store, clock)
        account = await seed.account(balance="100")
        txn = await seed.pending(TransactionType.EXPENSE, "30", actors[Role.EMPLOYEE], from_account_id=account.id)

        with capture_logs() as logs:
            approved = await app.transactions.approve(txn.id, actors[Role.HOLDER])

        assert approved.is_approved
        assert await _balance(store, account.id) == Decimal("70")
        events = [log["event"] for log in logs]
        assert events.count("audit_entry") == 1
        assert events.count("audit_storage_failed") == 1


class TestReject:
    """Tests for rejection."""

    @pytest.mark.asyncio
    async def test_reject_records_reason_without_effects(self, app, store, seed, ledger_setup, actors):
        account, category, budget = ledger_setup
        txn = await seed.pending(
            TransactionType.EXPENSE, "30", actors[Role.EMPLOYEE],
            from_account_id=account.id, category_id=category.id,
        )

        rejected = await app.transactions.reject(txn.id, "Personal purchase", actors[Role.HOLDER])

        assert rejected.status == TransactionStatus.REJECTED
        assert rejected.rejection_reason == "Personal purchase"
        assert rejected.approved_by_id == actors[Role.HOLDER].id
        assert await _balance(store, account.id) == Decimal("100")
        assert (await store.find_one(Collection.BUDGETS, {"id": budget.id})).spent == Decimal("0")

        entries = await store.find(Collection.AUDIT_LOGS, {"entity_id": txn.id})
        assert [entry.action for entry in entries] == [AuditAction.REJECT]
        assert entries[0].changes["reason"] == "Personal purchase"

    @pytest.mark.asyncio
    async def test_missing_reason_stored_empty(self, app, seed, actors):
        txn = await seed.pending(TransactionType.INCOME, "10", actors[Role.EMPLOYEE])

        rejected = await app.transactions.reject(txn.id, None, actors[Role.HOLDER])

        assert rejected.rejection_reason == ""

    @pytest.mark.asyncio
    async def test_approved_cannot_be_rejected(self, app, seed, actors):
        txn = await seed.pending(TransactionType.INCOME, "10", actors[Role.EMPLOYEE])
        await app.transactions.approve(txn.id, actors[Role.HOLDER])

        with pytest.raises(InvalidStateError):
            await app.transactions.reject(txn.id, "late", actors[Role.HOLDER])

    @pytest.mark.asyncio
    async def test_employee_cannot_reject(self, app, seed, actors):
        txn = await seed.pending(TransactionType.INCOME, "10", actors[Role.EMPLOYEE])

        with pytest.raises(UnauthorizedError):
            await app.transactions.reject(txn.id, "no", actors[Role.EMPLOYEE])


class TestEdits:
    """Tests for update, delete and get."""

    @pytest.mark.asyncio
    async def test_editing_approved_amount_leaves_ledger(self, app, store, seed, ledger_setup, actors):
        """Test that balances and budgets keep the approved amount."""
        account, category, budget = ledger_setup
        txn = await seed.pending(
            TransactionType.EXPENSE, "30", actors[Role.EMPLOYEE],
            from_account_id=account.id, category_id=category.id,
        )
        await app.transactions.approve(txn.id, actors[Role.HOLDER])

        with capture_logs() as logs:
            updated = await app.transactions.update(
                txn.id, TransactionUpdate(amount=Decimal("45")), actors[Role.EMPLOYEE]
            )

        assert updated.amount == Decimal("45")
        assert updated.status == TransactionStatus.APPROVED
        assert await _balance(store, account.id) == Decimal("70")
        assert (await store.find_one(Collection.BUDGETS, {"id": budget.id})).spent == Decimal("30")
        assert "approved_transaction_amount_edited" in [log["event"] for log in logs]

        entries = await store.find(Collection.AUDIT_LOGS, {"entity_id": txn.id, "action": AuditAction.UPDATE})
        assert entries[0].changes == {"amount": "45"}

    @pytest.mark.asyncio
    async def test_update_description(self, app, seed, actors):
        txn = await seed.pending(TransactionType.INCOME, "10", actors[Role.EMPLOYEE])

        updated = await app.transactions.update(
            txn.id, TransactionUpdate(description="  Consulting fee "), actors[Role.EMPLOYEE]
        )

        assert updated.description == "Consulting fee"
        assert updated.updated_at == NOW

    @pytest.mark.asyncio
    async def test_empty_update_rejected(self, app, seed, actors):
        txn = await seed.pending(TransactionType.INCOME, "10", actors[Role.EMPLOYEE])

        with pytest.raises(ValidationError):
            await app.transactions.update(txn.id, TransactionUpdate(), actors[Role.EMPLOYEE])

    @pytest.mark.asyncio
    async def test_update_other_company_not_found(self, app, store, seed, actors, outsider):
        txn = await seed.pending(TransactionType.INCOME, "10", actors[Role.EMPLOYEE])

        with pytest.raises(NotFoundError):
            await app.transactions.update(txn.id, TransactionUpdate(description="x"), outsider)

        assert await _audit_actions(store, txn.id) == []

    @pytest.mark.asyncio
    async def test_delete_approved_leaves_ledger(self, app, store, seed, ledger_setup, actors):
        account, _, _ = ledger_setup
        txn = await seed.pending(TransactionType.EXPENSE, "30", actors[Role.EMPLOYEE], from_account_id=account.id)
        await app.transactions.approve(txn.id, actors[Role.HOLDER])

        await app.transactions.delete(txn.id, actors[Role.EMPLOYEE])

        assert await store.find_one(Collection.TRANSACTIONS, {"id": txn.id}) is None
        assert await _balance(store, account.id) == Decimal("70")
        assert await _audit_actions(store, txn.id) == [AuditAction.APPROVE, AuditAction.DELETE]

    @pytest.mark.asyncio
    async def test_delete_missing(self, app, actors):
        with pytest.raises(NotFoundError):
            await app.transactions.delete(uuid4(), actors[Role.EMPLOYEE])

    @pytest.mark.asyncio
    async def test_get_is_company_scoped(self, app, seed, actors, outsider):
        txn = await seed.pending(TransactionType.INCOME, "10", actors[Role.EMPLOYEE])

        assert (await app.transactions.get(txn.id, actors[Role.HOLDER])).id == txn.id
        with pytest.raises(NotFoundError):
            await app.transactions.get(txn.id, outsider)
