"""
Budget Tracker

Accumulates approved expense amounts into `Budget.spent`.

Every active budget of the category (within the company) is incremented,
whatever its period window. Budget periods are shown to users but are not
used to decide which budgets an expense counts against.
"""

from decimal import Decimal
from uuid import UUID

import structlog

from approval_ledger.services.storage import Collection, EntityStore


logger = structlog.get_logger(__name__)


class BudgetTracker:
    def __init__(self, store: EntityStore):
        self._store = store

    async def record_spending(
        self,
        company_id: UUID,
        category_id: UUID,
        amount: Decimal,
    ) -> int:
        """
        Add `amount` to every active budget of `category_id`.

        Returns:
            Number of budgets updated
        """
        touched = await self._store.update_many(
            Collection.BUDGETS,
            {"company_id": company_id, "category_id": category_id, "is_active": True},
            inc_fields={"spent": amount},
        )
        logger.info(
            "budget_spending_recorded",
            company_id=str(company_id),
            category_id=str(category_id),
            amount=str(amount),
            budgets=touched,
        )
        return touched
