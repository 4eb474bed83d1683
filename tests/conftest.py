"""
Shared fixtures.

Test strategy:
1. Unit tests for individual components (roles, models, validators)
2. Workflow tests against the in-memory store
3. No real API calls in tests (Google Sheets is faked at the worksheet level)
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from approval_ledger.config import AppSettings
from approval_ledger.models import (
    Account,
    AccountType,
    Budget,
    BudgetPeriod,
    Category,
    CategoryType,
    Role,
    Transaction,
    TransactionInput,
    TransactionType,
    User,
    get_budget_period_dates,
)
from approval_ledger.models.user import Actor
from approval_ledger.orchestrator import create_app_components
from approval_ledger.services.email import LoggingEmailSender
from approval_ledger.services.runtime import FixedClock
from approval_ledger.services.storage import Collection, InMemoryEntityStore


NOW = datetime(2025, 3, 15, 10, 30, tzinfo=timezone.utc)


def make_actor(company_id: UUID, role: Role, name: Optional[str] = None) -> Actor:
    user = User(
        company_id=company_id,
        email=f"{role.value}.{uuid4().hex[:6]}@example.com",
        name=name or role.value.replace("_", " ").title(),
        role=role,
        email_verified=True,
    )
    return Actor(user=user, ip_address="10.0.0.7", user_agent="pytest")


class Seeder:
    """Writes reference data straight into the store, bypassing the workflow."""

    def __init__(self, store: InMemoryEntityStore, company_id: UUID):
        self.store = store
        self.company_id = company_id

    async def account(
        self,
        balance: str = "0",
        name: str = "Operating",
        company_id: Optional[UUID] = None,
        is_active: bool = True,
    ) -> Account:
        account = Account(
            company_id=company_id or self.company_id,
            name=name,
            type=AccountType.BANK,
            currency="USD",
            balance=Decimal(balance),
            is_active=is_active,
        )
        await self.store.insert(Collection.ACCOUNTS, account)
        return account

    async def category(
        self,
        name: str = "Office Supplies",
        type: CategoryType = CategoryType.EXPENSE,
        company_id: Optional[UUID] = None,
    ) -> Category:
        category = Category(
            company_id=company_id or self.company_id,
            name=name,
            type=type,
        )
        await self.store.insert(Collection.CATEGORIES, category)
        return category

    async def budget(
        self,
        category_id: UUID,
        amount: str = "100",
        name: str = "Supplies budget",
        company_id: Optional[UUID] = None,
        is_active: bool = True,
        period: BudgetPeriod = BudgetPeriod.MONTHLY,
    ) -> Budget:
        start, end = get_budget_period_dates(period, NOW)
        budget = Budget(
            company_id=company_id or self.company_id,
            category_id=category_id,
            name=name,
            amount=Decimal(amount),
            period=period,
            start_date=start,
            end_date=end,
            is_active=is_active,
        )
        await self.store.insert(Collection.BUDGETS, budget)
        return budget

    async def user(self, actor: Actor) -> User:
        await self.store.insert(Collection.USERS, actor.user)
        return actor.user

    async def pending(
        self,
        type: TransactionType,
        amount: str,
        created_by: Actor,
        from_account_id: Optional[UUID] = None,
        to_account_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
    ) -> Transaction:
        txn = Transaction(
            company_id=created_by.company_id,
            type=type,
            amount=Decimal(amount),
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            category_id=category_id,
            created_by_id=created_by.id,
            created_by_name=created_by.user.name,
            transaction_date=NOW,
            created_at=NOW,
        )
        await self.store.insert(Collection.TRANSACTIONS, txn)
        return txn


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def company_id() -> UUID:
    return uuid4()


@pytest.fixture
def other_company_id() -> UUID:
    return uuid4()


@pytest.fixture
def actors(company_id) -> dict[Role, Actor]:
    """One actor per role, all in the same company."""
    return {role: make_actor(company_id, role) for role in Role}


@pytest.fixture
def outsider(other_company_id) -> Actor:
    """A super admin of a different company."""
    return make_actor(other_company_id, Role.SUPER_ADMIN, name="Outsider")


@pytest.fixture
def seed(store, company_id) -> Seeder:
    return Seeder(store, company_id)


@pytest.fixture
def email_sender() -> LoggingEmailSender:
    return LoggingEmailSender()


@pytest.fixture
def app(store, clock, email_sender):
    return create_app_components(
        store=store,
        email_sender=email_sender,
        clock=clock,
        app_settings=AppSettings(),
        configure_logs=False,
    )


@pytest_asyncio.fixture
async def ledger_setup(seed, actors):
    """An account holding 100, an expense category and a 100 budget on it."""
    account = await seed.account(balance="100")
    category = await seed.category()
    budget = await seed.budget(category.id, amount="100")
    return account, category, budget


def expense_input(amount: str, account_id: UUID, category_id: Optional[UUID] = None) -> TransactionInput:
    return TransactionInput(
        type="expense",
        amount=Decimal(amount),
        description="Printer paper",
        from_account_id=account_id,
        category_id=category_id,
    )


@pytest.fixture
def make_expense():
    return expense_input
