"""
Read-Side Queries

DESIGN DECISION: Queries are DETERMINISTIC and read-only.
They never write, never estimate, and always scope by the acting user's
company. The store only matches on equality, so date ranges, sorting and
pagination happen here in Python.

Visibility:
- Transaction list: everyone; roles below holder only see their own
- Approval queue: holder and above
- Financial summary and audit trail: accountant and above
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from math import ceil
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from approval_ledger.errors import InternalError
from approval_ledger.models.audit import AuditAction, AuditEntity, AuditLog
from approval_ledger.models.finance import (
    Budget,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from approval_ledger.models.roles import (
    can_approve,
    can_generate_reports,
    can_view_all_expenses,
)
from approval_ledger.models.user import Actor
from approval_ledger.services.auth import ensure_permission
from approval_ledger.services.storage import Collection, EntityStore


logger = structlog.get_logger(__name__)

UNCATEGORIZED = "Other"


# =============================================================================
# QUERY AND RESULT MODELS
# =============================================================================

class TransactionFilter(BaseModel):
    type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    date_from: Optional[date] = Field(default=None, description="Inclusive")
    date_to: Optional[date] = Field(default=None, description="Inclusive (whole day)")
    page: int = Field(default=1, ge=1)


class AuditFilter(BaseModel):
    entity: Optional[AuditEntity] = None
    action: Optional[AuditAction] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    page: int = Field(default=1, ge=1)


class TransactionPage(BaseModel):
    items: list[Transaction]
    page: int
    total_pages: int
    total_count: int


class AuditPage(BaseModel):
    items: list[AuditLog]
    page: int
    total_pages: int
    total_count: int


class CategoryAmount(BaseModel):
    name: str
    amount: Decimal


class MonthlyAmount(BaseModel):
    month: str = Field(..., description="e.g. 'Jan 2025'")
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")


class FinancialSummary(BaseModel):
    """Totals over approved transactions only."""

    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")
    income_by_category: list[CategoryAmount] = Field(default_factory=list)
    expense_by_category: list[CategoryAmount] = Field(default_factory=list)
    monthly: list[MonthlyAmount] = Field(default_factory=list)

    @property
    def net_profit(self) -> Decimal:
        return self.total_income - self.total_expense


# =============================================================================
# HELPERS
# =============================================================================

def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _in_range(value: datetime, date_from: Optional[date], date_to: Optional[date]) -> bool:
    if date_from is not None and value < _day_start(date_from):
        return False
    # Include the entire end day
    if date_to is not None and value >= _day_start(date_to + timedelta(days=1)):
        return False
    return True


def _paginate(items: list, page: int, page_size: int) -> tuple[list, int]:
    total_pages = max(1, ceil(len(items) / page_size))
    start = (page - 1) * page_size
    return items[start:start + page_size], total_pages


class ReportQueries:
    """
    Executes read-side queries against the entity store.

    GUARANTEES:
    - Only returns real data from storage
    - Never crosses company scope
    - Empty results are empty, never an error
    """

    def __init__(self, store: EntityStore, page_size: int = 20):
        self._store = store
        self._page_size = page_size

    async def _find(self, query: str, collection: Collection, match: dict, **kwargs) -> list:
        try:
            return await self._store.find(collection, match, **kwargs)
        except Exception as e:
            logger.error(
                "report_query_failed",
                query=query,
                collection=collection.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise InternalError(f"Failed to load {query.replace('_', ' ')}") from e

    async def list_transactions(
        self,
        actor: Actor,
        filter: Optional[TransactionFilter] = None,
    ) -> TransactionPage:
        """Filtered, newest-first, paginated transaction list."""
        filter = filter or TransactionFilter()

        match: dict = {"company_id": actor.company_id}
        if not can_view_all_expenses(actor.role):
            match["created_by_id"] = actor.id
        if filter.type is not None:
            match["type"] = filter.type
        if filter.status is not None:
            match["status"] = filter.status

        transactions = await self._find(
            "transactions", Collection.TRANSACTIONS, match, sort_by="created_at", descending=True
        )
        transactions = [
            txn for txn in transactions
            if _in_range(txn.transaction_date, filter.date_from, filter.date_to)
        ]

        items, total_pages = _paginate(transactions, filter.page, self._page_size)
        return TransactionPage(
            items=items,
            page=filter.page,
            total_pages=total_pages,
            total_count=len(transactions),
        )

    async def pending_approvals(self, actor: Actor) -> list[Transaction]:
        """The approval queue, newest first."""
        ensure_permission(actor, can_approve(actor.role), "view the approval queue")
        return await self._find(
            "pending_approvals",
            Collection.TRANSACTIONS,
            {"company_id": actor.company_id, "status": TransactionStatus.PENDING},
            sort_by="created_at",
            descending=True,
        )

    async def financial_summary(self, actor: Actor) -> FinancialSummary:
        """
        Income and expense totals, by category and by month.

        Transfers move money between the company's own accounts and are
        left out. Transactions without a known category count as "Other".
        """
        ensure_permission(actor, can_generate_reports(actor.role), "generate reports")

        transactions = await self._find(
            "financial_summary",
            Collection.TRANSACTIONS,
            {"company_id": actor.company_id, "status": TransactionStatus.APPROVED},
        )
        # Includes deleted categories so old transactions keep their names
        categories = await self._find(
            "financial_summary", Collection.CATEGORIES, {"company_id": actor.company_id}
        )
        category_names = {category.id: category.name for category in categories}

        income_by_category: dict[str, Decimal] = {}
        expense_by_category: dict[str, Decimal] = {}
        monthly: dict[tuple[int, int], MonthlyAmount] = {}
        summary = FinancialSummary()

        for txn in transactions:
            if txn.type == TransactionType.TRANSFER:
                continue

            month_key = (txn.transaction_date.year, txn.transaction_date.month)
            if month_key not in monthly:
                monthly[month_key] = MonthlyAmount(
                    month=txn.transaction_date.strftime("%b %Y")
                )
            name = category_names.get(txn.category_id, UNCATEGORIZED)

            if txn.type == TransactionType.INCOME:
                summary.total_income += txn.amount
                monthly[month_key].income += txn.amount
                income_by_category[name] = income_by_category.get(name, Decimal("0")) + txn.amount
            else:
                summary.total_expense += txn.amount
                monthly[month_key].expense += txn.amount
                expense_by_category[name] = expense_by_category.get(name, Decimal("0")) + txn.amount

        summary.income_by_category = [
            CategoryAmount(name=name, amount=amount)
            for name, amount in sorted(income_by_category.items(), key=lambda kv: kv[1], reverse=True)
        ]
        summary.expense_by_category = [
            CategoryAmount(name=name, amount=amount)
            for name, amount in sorted(expense_by_category.items(), key=lambda kv: kv[1], reverse=True)
        ]
        summary.monthly = [monthly[key] for key in sorted(monthly)]

        logger.info(
            "financial_summary_generated",
            company_id=str(actor.company_id),
            transactions=len(transactions),
        )
        return summary

    async def audit_trail(
        self,
        actor: Actor,
        filter: Optional[AuditFilter] = None,
    ) -> AuditPage:
        """Filtered, newest-first, paginated audit entries for the company."""
        ensure_permission(actor, can_generate_reports(actor.role), "view the audit trail")
        filter = filter or AuditFilter()

        match: dict = {"company_id": actor.company_id}
        if filter.entity is not None:
            match["entity"] = filter.entity
        if filter.action is not None:
            match["action"] = filter.action

        entries = await self._find(
            "audit_trail", Collection.AUDIT_LOGS, match, sort_by="created_at", descending=True
        )
        entries = [
            entry for entry in entries
            if _in_range(entry.created_at, filter.date_from, filter.date_to)
        ]

        items, total_pages = _paginate(entries, filter.page, self._page_size)
        return AuditPage(
            items=items,
            page=filter.page,
            total_pages=total_pages,
            total_count=len(entries),
        )

    async def active_budgets(self, actor: Actor) -> list[Budget]:
        """Active budgets with their running totals, by name."""
        return await self._find(
            "budgets",
            Collection.BUDGETS,
            {"company_id": actor.company_id, "is_active": True},
            sort_by="name",
        )
