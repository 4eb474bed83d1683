"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Hand every workflow component its store explicitly (no global client)
4. Keep business logic decoupled from storage implementation

The interface is intentionally small - find / insert / update-by-filter /
delete over six collections. Filters are equality matches on top-level
fields, e.g. {"id": txn_id, "company_id": company_id, "status": "pending"}.

CONCURRENCY CONTRACT:
- find_one_and_update is atomic: the filter match and the write happen
  as one step. This is what makes "approve only if still pending" safe.
- `inc` updates are additive and applied against the current stored
  value, never against a value the caller read earlier.
- transaction() groups several writes into one unit of work when
  `supports_transactions` is True. Otherwise it is a no-op grouping and
  each write commits on its own.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Mapping, Optional

from pydantic import BaseModel

from approval_ledger.models.audit import AuditLog
from approval_ledger.models.finance import Account, Budget, Category, Transaction
from approval_ledger.models.user import User


class Collection(str, Enum):
    """Logical collections held by every store."""
    ACCOUNTS = "accounts"
    CATEGORIES = "categories"
    BUDGETS = "budgets"
    TRANSACTIONS = "transactions"
    AUDIT_LOGS = "audit_logs"
    USERS = "users"


COLLECTION_MODELS: dict[Collection, type[BaseModel]] = {
    Collection.ACCOUNTS: Account,
    Collection.CATEGORIES: Category,
    Collection.BUDGETS: Budget,
    Collection.TRANSACTIONS: Transaction,
    Collection.AUDIT_LOGS: AuditLog,
    Collection.USERS: User,
}

# Never updated or deleted once written
APPEND_ONLY = frozenset({Collection.AUDIT_LOGS})

Filter = Mapping[str, Any]


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert an entity whose id already exists."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class AppendOnlyViolation(StorageError):
    """Attempted to modify an append-only collection."""
    pass


def matches(entity: BaseModel, filter: Filter) -> bool:
    """True if every filter key equals the entity's attribute."""
    for key, expected in filter.items():
        if getattr(entity, key, None) != expected:
            return False
    return True


def apply_update(
    entity: BaseModel,
    set_fields: Optional[Mapping[str, Any]] = None,
    inc_fields: Optional[Mapping[str, Any]] = None,
) -> BaseModel:
    """
    Return a copy of `entity` with `set_fields` assigned and `inc_fields`
    added to the current values.
    """
    update: dict[str, Any] = dict(set_fields or {})
    for key, delta in (inc_fields or {}).items():
        current = getattr(entity, key)
        update[key] = current + Decimal(str(delta))
    return entity.model_copy(update=update, deep=True)


def sort_and_page(
    entities: list[BaseModel],
    sort_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
    offset: int = 0,
) -> list[BaseModel]:
    """Sort (stable, None last) and slice a filtered result set."""
    if sort_by:
        present = [e for e in entities if getattr(e, sort_by, None) is not None]
        missing = [e for e in entities if getattr(e, sort_by, None) is None]
        present.sort(key=lambda e: getattr(e, sort_by), reverse=descending)
        entities = present + missing
    if limit is None:
        return entities[offset:]
    return entities[offset:offset + limit]


class EntityStore(ABC):
    """
    Abstract persistence gateway.

    Any storage implementation (in-memory, Google Sheets, MongoDB, ...)
    must implement these methods.
    """

    supports_transactions: bool = False

    @abstractmethod
    async def find_one(
        self,
        collection: Collection,
        filter: Filter,
    ) -> Optional[BaseModel]:
        """
        Retrieve the first entity matching the filter.

        Returns:
            The entity if found, None otherwise
        """
        pass

    @abstractmethod
    async def find(
        self,
        collection: Collection,
        filter: Filter,
        sort_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[BaseModel]:
        """
        List entities matching the filter.

        Args:
            collection: Collection to search
            filter: Equality filter on top-level fields
            sort_by: Field name to sort by (insertion order if None)
            descending: Reverse the sort
            limit: Maximum number of results
            offset: Number of results to skip

        Returns:
            List of matching entities
        """
        pass

    @abstractmethod
    async def count(self, collection: Collection, filter: Filter) -> int:
        pass

    @abstractmethod
    async def insert(self, collection: Collection, entity: BaseModel) -> None:
        """
        Insert a new entity.

        Raises:
            DuplicateError: If an entity with the same id exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def find_one_and_update(
        self,
        collection: Collection,
        filter: Filter,
        set_fields: Optional[Mapping[str, Any]] = None,
        inc_fields: Optional[Mapping[str, Any]] = None,
    ) -> Optional[BaseModel]:
        """
        Atomically update the first entity matching the filter.

        Returns:
            The entity after the update, or None if nothing matched
        """
        pass

    @abstractmethod
    async def update_many(
        self,
        collection: Collection,
        filter: Filter,
        set_fields: Optional[Mapping[str, Any]] = None,
        inc_fields: Optional[Mapping[str, Any]] = None,
    ) -> int:
        """
        Update every entity matching the filter.

        Returns:
            Number of entities updated
        """
        pass

    @abstractmethod
    async def delete_one(self, collection: Collection, filter: Filter) -> bool:
        """
        Delete the first entity matching the filter.

        Returns:
            True if an entity was deleted
        """
        pass

    async def update_one(
        self,
        collection: Collection,
        filter: Filter,
        set_fields: Optional[Mapping[str, Any]] = None,
        inc_fields: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Update the first match. Returns True if something matched."""
        updated = await self.find_one_and_update(
            collection, filter, set_fields=set_fields, inc_fields=inc_fields
        )
        return updated is not None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Unit of work. The base implementation groups nothing: each write
        inside the block commits independently.
        """
        yield

    @staticmethod
    def _guard_mutable(collection: Collection) -> None:
        if collection in APPEND_ONLY:
            raise AppendOnlyViolation(
                f"Collection '{collection.value}' is append-only"
            )
