"""
Core Finance Models for Approval Ledger

Accounts, categories, budgets and transactions, all scoped by company.

DESIGN DECISION: Persisted models are strict (amount > 0, known enums),
while the *Input models that come from callers are loose. Loose input is
checked by the InputValidator so callers get every problem at once as a
list of issues, not just the first pydantic error.

Money fields are Decimal throughout. Balances and budget `spent` are never
written by callers: they only change through the ledger and budget
updaters when a transaction is approved.
"""

import calendar
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Read naive datetimes as UTC; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


DEFAULT_CATEGORY_COLOR = "#6366f1"


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Kinds of financial account."""
    BANK = "bank"
    CASH = "cash"
    CREDIT = "credit"
    WALLET = "wallet"
    OTHER = "other"

    @property
    def display_name(self) -> str:
        return {
            AccountType.BANK: "Bank Account",
            AccountType.CASH: "Cash",
            AccountType.CREDIT: "Credit Card",
            AccountType.WALLET: "Digital Wallet",
            AccountType.OTHER: "Other",
        }[self]


class CategoryType(str, Enum):
    """Whether a category classifies income or expense."""
    INCOME = "income"
    EXPENSE = "expense"


class BudgetPeriod(str, Enum):
    """Budget time window."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class TransactionType(str, Enum):
    """Transaction type. Drives which accounts the ledger touches."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


class TransactionStatus(str, Enum):
    """
    Approval status.

    CRITICAL: PENDING is the only non-terminal state.
    APPROVED and REJECTED are reached exactly once and never left.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


# =============================================================================
# ENTITIES
# =============================================================================

class Account(BaseModel):
    """
    A financial account.

    `balance` is signed: expenses are applied without an overdraft check,
    so it may go negative.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    company_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    type: AccountType
    currency: str = Field(..., min_length=3, max_length=3)
    balance: Decimal = Field(default=Decimal("0"))
    description: str = Field(default="", max_length=1000)
    account_number: str = Field(default="", max_length=50)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Category(BaseModel):
    """
    A transaction category.

    Only display attributes (name, color, icon, description) change after
    creation; the income/expense type is fixed.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    company_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    color: str = Field(default=DEFAULT_CATEGORY_COLOR, pattern="^#[0-9a-fA-F]{6}$")
    icon: str = Field(default="", max_length=50)
    description: str = Field(default="", max_length=500)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Budget(BaseModel):
    """
    A spending limit for one category.

    `spent` accumulates approved expense amounts for the category. The
    period dates are informational: spending is not filtered by them.
    """

    id: UUID = Field(default_factory=uuid4)
    company_id: UUID
    category_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., ge=0, description="Budget limit")
    spent: Decimal = Field(default=Decimal("0"), description="Amount spent so far")
    currency: str = Field(default="USD", min_length=3, max_length=3)
    period: BudgetPeriod
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def remaining(self) -> Decimal:
        """Unspent budget, floored at zero."""
        return max(Decimal("0"), self.amount - self.spent)

    @property
    def utilization(self) -> float:
        """Percentage of the budget consumed (0 for a zero budget)."""
        if self.amount == 0:
            return 0.0
        return float(self.spent / self.amount * 100)

    @property
    def is_over_budget(self) -> bool:
        return self.spent > self.amount

    def can_spend(self, amount: Decimal) -> bool:
        return self.spent + amount <= self.amount


class Transaction(BaseModel):
    """
    A company income, expense or transfer awaiting (or past) approval.

    Which optional accounts matter depends on type:
    - income: to_account_id
    - expense: from_account_id
    - transfer: both
    """

    id: UUID = Field(default_factory=uuid4)
    company_id: UUID
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    description: str = Field(default="", max_length=1000)
    from_account_id: Optional[UUID] = None
    to_account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None

    status: TransactionStatus = TransactionStatus.PENDING
    created_by_id: UUID
    created_by_name: str = ""
    approved_by_id: Optional[UUID] = None
    approved_by_name: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    transaction_date: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING

    @property
    def is_approved(self) -> bool:
        return self.status == TransactionStatus.APPROVED


# =============================================================================
# CALLER INPUT - checked by InputValidator before use
# =============================================================================

class TransactionInput(BaseModel):
    """Fields a caller supplies to create a transaction."""
    model_config = ConfigDict(str_strip_whitespace=True)

    type: Optional[str] = None
    amount: Optional[Decimal] = None
    description: str = ""
    from_account_id: Optional[UUID] = None
    to_account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    transaction_date: Optional[datetime] = None

    @field_validator('transaction_date')
    @classmethod
    def normalize_transaction_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class TransactionUpdate(BaseModel):
    """Editable transaction fields. None means "leave unchanged"."""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: Optional[str] = None
    amount: Optional[Decimal] = None
    transaction_date: Optional[datetime] = None

    @field_validator('transaction_date')
    @classmethod
    def normalize_transaction_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class AccountInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = None
    type: Optional[str] = None
    currency: Optional[str] = None
    account_number: str = ""
    description: str = ""


class CategoryInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = None
    type: Optional[str] = None
    color: Optional[str] = None
    icon: str = ""
    description: str = ""


class BudgetInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = None
    category_id: Optional[UUID] = None
    amount: Optional[Decimal] = None
    period: Optional[str] = None


# =============================================================================
# HELPERS
# =============================================================================

def get_budget_period_dates(
    period: BudgetPeriod,
    reference: datetime,
) -> tuple[datetime, datetime]:
    """
    Start and end of the budget window containing `reference`.

    Monthly and quarterly windows end at midnight of their last day;
    yearly windows end at 23:59:59 on December 31.
    """
    year, month = reference.year, reference.month
    tz = reference.tzinfo

    if period == BudgetPeriod.MONTHLY:
        last_day = calendar.monthrange(year, month)[1]
        return (
            datetime(year, month, 1, tzinfo=tz),
            datetime(year, month, last_day, tzinfo=tz),
        )
    if period == BudgetPeriod.QUARTERLY:
        start_month = (month - 1) // 3 * 3 + 1
        end_month = start_month + 2
        last_day = calendar.monthrange(year, end_month)[1]
        return (
            datetime(year, start_month, 1, tzinfo=tz),
            datetime(year, end_month, last_day, tzinfo=tz),
        )
    return (
        datetime(year, 1, 1, tzinfo=tz),
        datetime(year, 12, 31, 23, 59, 59, tzinfo=tz),
    )


# (name, type, color, icon)
DEFAULT_CATEGORIES: list[tuple[str, CategoryType, str, str]] = [
    ("Sales", CategoryType.INCOME, "#22c55e", "dollar-sign"),
    ("Services", CategoryType.INCOME, "#3b82f6", "briefcase"),
    ("Investment", CategoryType.INCOME, "#8b5cf6", "trending-up"),
    ("Other Income", CategoryType.INCOME, "#06b6d4", "plus-circle"),
    ("Payroll", CategoryType.EXPENSE, "#ef4444", "users"),
    ("Office Supplies", CategoryType.EXPENSE, "#f97316", "package"),
    ("Utilities", CategoryType.EXPENSE, "#eab308", "zap"),
    ("Rent", CategoryType.EXPENSE, "#84cc16", "home"),
    ("Marketing", CategoryType.EXPENSE, "#ec4899", "megaphone"),
    ("Travel", CategoryType.EXPENSE, "#14b8a6", "plane"),
    ("Software", CategoryType.EXPENSE, "#6366f1", "code"),
    ("Other Expense", CategoryType.EXPENSE, "#64748b", "minus-circle"),
]
