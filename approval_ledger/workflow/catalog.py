"""
Catalog Service

Accounts, categories and budgets: the reference data transactions point
at. Every mutation here requires the admin level.

DESIGN DECISION: Catalog entities are soft-deleted (is_active = False).
Approved transactions keep pointing at them and reports still resolve
their names. Deleted budgets stop accumulating spending.

Callers never set an account balance or a budget's spent total: both start
at zero and only move through the ledger and budget updaters.
"""

from typing import Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel

from approval_ledger.audit import AuditRecorder
from approval_ledger.errors import InternalError, NotFoundError, ValidationError
from approval_ledger.models.audit import AuditAction, AuditEntity
from approval_ledger.models.finance import (
    DEFAULT_CATEGORIES,
    DEFAULT_CATEGORY_COLOR,
    Account,
    AccountInput,
    AccountType,
    Budget,
    BudgetInput,
    BudgetPeriod,
    Category,
    CategoryInput,
    CategoryType,
    get_budget_period_dates,
)
from approval_ledger.models.roles import (
    can_manage_accounts,
    can_manage_budgets,
    can_manage_categories,
)
from approval_ledger.models.user import Actor
from approval_ledger.services.auth import ensure_permission
from approval_ledger.services.runtime import Clock, IdentityGenerator, SystemClock
from approval_ledger.services.storage import Collection, EntityStore
from approval_ledger.validation import InputValidator


logger = structlog.get_logger(__name__)

ENTITY_NAMES = {
    Collection.ACCOUNTS: "account",
    Collection.CATEGORIES: "category",
    Collection.BUDGETS: "budget",
}


class CatalogService:
    def __init__(
        self,
        store: EntityStore,
        audit: Optional[AuditRecorder] = None,
        validator: Optional[InputValidator] = None,
        clock: Optional[Clock] = None,
        new_id: Optional[Callable[[], UUID]] = None,
        default_currency: str = "USD",
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._audit = audit or AuditRecorder(store, self._clock)
        self._validator = validator or InputValidator(store)
        self._new_id = new_id or IdentityGenerator()
        self._default_currency = default_currency

    # =========================================================================
    # SHARED PLUMBING
    # =========================================================================

    async def _insert(self, collection: Collection, entity: BaseModel) -> None:
        try:
            await self._store.insert(collection, entity)
        except Exception as e:
            logger.error("catalog_insert_failed", collection=collection.value, error=str(e))
            raise InternalError(f"Failed to create {ENTITY_NAMES[collection]}") from e

    async def _update(
        self,
        collection: Collection,
        entity_id: UUID,
        actor: Actor,
        set_fields: dict,
    ) -> BaseModel:
        set_fields["updated_at"] = self._clock.now()
        try:
            updated = await self._store.find_one_and_update(
                collection,
                {"id": entity_id, "company_id": actor.company_id},
                set_fields=set_fields,
            )
        except Exception as e:
            logger.error(
                "catalog_update_failed",
                collection=collection.value,
                entity_id=str(entity_id),
                error=str(e),
            )
            raise InternalError(f"Failed to update {ENTITY_NAMES[collection]}") from e

        if updated is None:
            raise NotFoundError(f"{ENTITY_NAMES[collection].capitalize()} {entity_id} not found")
        return updated

    async def _soft_delete(
        self,
        collection: Collection,
        entity_kind: AuditEntity,
        entity_id: UUID,
        actor: Actor,
    ) -> None:
        await self._update(collection, entity_id, actor, {"is_active": False})
        logger.info(
            "catalog_entity_deactivated",
            collection=collection.value,
            entity_id=str(entity_id),
        )
        await self._audit.record(AuditAction.DELETE, entity_kind, entity_id, actor)

    @staticmethod
    def _raise_if_invalid(result) -> None:
        if not result.is_valid:
            raise ValidationError(result.summary(), issues=result.issues)

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def create_account(self, data: AccountInput, actor: Actor) -> UUID:
        """Create an account with a zero balance. Returns its id."""
        ensure_permission(actor, can_manage_accounts(actor.role), "manage accounts")
        self._raise_if_invalid(self._validator.validate_account(data))

        now = self._clock.now()
        account = Account(
            id=self._new_id(),
            company_id=actor.company_id,
            name=data.name,
            type=AccountType(data.type),
            currency=data.currency.upper(),
            account_number=data.account_number,
            description=data.description,
            created_at=now,
            updated_at=now,
        )
        await self._insert(Collection.ACCOUNTS, account)

        await self._audit.record(
            AuditAction.CREATE,
            AuditEntity.ACCOUNT,
            account.id,
            actor,
            changes={"name": account.name, "type": account.type.value, "currency": account.currency},
        )
        return account.id

    async def update_account(self, account_id: UUID, data: AccountInput, actor: Actor) -> Account:
        """Rename or retype an account. The balance is never editable."""
        ensure_permission(actor, can_manage_accounts(actor.role), "manage accounts")
        self._raise_if_invalid(self._validator.validate_account(data, partial=True))

        set_fields = {}
        if data.name is not None:
            set_fields["name"] = data.name
        if data.type is not None:
            set_fields["type"] = AccountType(data.type)
        if data.currency is not None:
            set_fields["currency"] = data.currency.upper()
        if data.account_number:
            set_fields["account_number"] = data.account_number
        if data.description:
            set_fields["description"] = data.description

        account = await self._update(Collection.ACCOUNTS, account_id, actor, set_fields)
        await self._audit.record(
            AuditAction.UPDATE,
            AuditEntity.ACCOUNT,
            account_id,
            actor,
            changes={"name": account.name},
        )
        return account

    async def delete_account(self, account_id: UUID, actor: Actor) -> None:
        ensure_permission(actor, can_manage_accounts(actor.role), "manage accounts")
        await self._soft_delete(Collection.ACCOUNTS, AuditEntity.ACCOUNT, account_id, actor)

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def create_category(self, data: CategoryInput, actor: Actor) -> UUID:
        ensure_permission(actor, can_manage_categories(actor.role), "manage categories")
        self._raise_if_invalid(self._validator.validate_category(data))

        now = self._clock.now()
        category = Category(
            id=self._new_id(),
            company_id=actor.company_id,
            name=data.name,
            type=CategoryType(data.type),
            color=data.color or DEFAULT_CATEGORY_COLOR,
            icon=data.icon,
            description=data.description,
            created_at=now,
            updated_at=now,
        )
        await self._insert(Collection.CATEGORIES, category)

        await self._audit.record(
            AuditAction.CREATE,
            AuditEntity.CATEGORY,
            category.id,
            actor,
            changes={"name": category.name, "type": category.type.value, "color": category.color},
        )
        return category.id

    async def update_category(self, category_id: UUID, data: CategoryInput, actor: Actor) -> Category:
        """Change display attributes. The income/expense type is fixed."""
        ensure_permission(actor, can_manage_categories(actor.role), "manage categories")
        self._raise_if_invalid(self._validator.validate_category(data, partial=True))

        set_fields = {}
        if data.name is not None:
            set_fields["name"] = data.name
        if data.color:
            set_fields["color"] = data.color
        if data.icon:
            set_fields["icon"] = data.icon
        if data.description:
            set_fields["description"] = data.description

        category = await self._update(Collection.CATEGORIES, category_id, actor, set_fields)
        await self._audit.record(
            AuditAction.UPDATE,
            AuditEntity.CATEGORY,
            category_id,
            actor,
            changes={"name": category.name},
        )
        return category

    async def delete_category(self, category_id: UUID, actor: Actor) -> None:
        ensure_permission(actor, can_manage_categories(actor.role), "manage categories")
        await self._soft_delete(Collection.CATEGORIES, AuditEntity.CATEGORY, category_id, actor)

    async def seed_default_categories(self, actor: Actor) -> list[UUID]:
        """
        Create the standard income and expense categories for the actor's
        company, skipping any name that already exists.

        Returns:
            Ids of the categories created
        """
        ensure_permission(actor, can_manage_categories(actor.role), "manage categories")

        try:
            existing = await self._store.find(
                Collection.CATEGORIES, {"company_id": actor.company_id}
            )
        except Exception as e:
            logger.error("category_seed_failed", company_id=str(actor.company_id), error=str(e))
            raise InternalError("Failed to load categories") from e
        taken = {category.name.lower() for category in existing}

        created = []
        for name, category_type, color, icon in DEFAULT_CATEGORIES:
            if name.lower() in taken:
                continue
            category_id = await self.create_category(
                CategoryInput(name=name, type=category_type.value, color=color, icon=icon),
                actor,
            )
            created.append(category_id)

        logger.info(
            "default_categories_seeded",
            company_id=str(actor.company_id),
            created=len(created),
        )
        return created

    # =========================================================================
    # BUDGETS
    # =========================================================================

    async def create_budget(self, data: BudgetInput, actor: Actor) -> UUID:
        """
        Create a budget for the period containing today.

        `spent` starts at zero; earlier approvals are not counted.
        """
        ensure_permission(actor, can_manage_budgets(actor.role), "manage budgets")
        self._raise_if_invalid(
            await self._validator.validate_budget(data, actor.company_id)
        )

        now = self._clock.now()
        period = BudgetPeriod(data.period)
        start_date, end_date = get_budget_period_dates(period, now)
        budget = Budget(
            id=self._new_id(),
            company_id=actor.company_id,
            category_id=data.category_id,
            name=data.name,
            amount=data.amount,
            currency=self._default_currency,
            period=period,
            start_date=start_date,
            end_date=end_date,
            created_at=now,
            updated_at=now,
        )
        await self._insert(Collection.BUDGETS, budget)

        await self._audit.record(
            AuditAction.CREATE,
            AuditEntity.BUDGET,
            budget.id,
            actor,
            changes={
                "name": budget.name,
                "category_id": str(budget.category_id),
                "amount": str(budget.amount),
                "period": budget.period.value,
            },
        )
        return budget.id

    async def update_budget(self, budget_id: UUID, data: BudgetInput, actor: Actor) -> Budget:
        """Change a budget's name or limit."""
        ensure_permission(actor, can_manage_budgets(actor.role), "manage budgets")
        self._raise_if_invalid(
            await self._validator.validate_budget(data, actor.company_id, partial=True)
        )

        set_fields = {}
        if data.name is not None:
            set_fields["name"] = data.name
        if data.amount is not None:
            set_fields["amount"] = data.amount

        budget = await self._update(Collection.BUDGETS, budget_id, actor, set_fields)
        await self._audit.record(
            AuditAction.UPDATE,
            AuditEntity.BUDGET,
            budget_id,
            actor,
            changes={"name": budget.name, "amount": str(budget.amount)},
        )
        return budget

    async def delete_budget(self, budget_id: UUID, actor: Actor) -> None:
        ensure_permission(actor, can_manage_budgets(actor.role), "manage budgets")
        await self._soft_delete(Collection.BUDGETS, AuditEntity.BUDGET, budget_id, actor)
