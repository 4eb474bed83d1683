"""
In-Memory Storage Implementation

Used by the test suite and by single-process deployments that do not need
persistence across restarts.

DESIGN DECISION: Every operation runs under one re-entrant lock and never
awaits while holding it. A conditional update is therefore a true
compare-and-swap, even when many coroutines (or threads) approve at once.

Units of work are implemented with an undo journal. Each write made inside
transaction() records how to reverse itself; if the block raises, the
journal is replayed backwards. This gives the approval path all-or-nothing
semantics: the status transition and the ledger/budget increments commit
together or not at all.

Entities are stored as model instances and copied on the way in and out,
so callers can never mutate stored state by accident.
"""

import threading
from contextlib import asynccontextmanager
from contextvars import ContextVar
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Mapping, Optional

import structlog
from pydantic import BaseModel

from approval_ledger.services.storage.interface import (
    Collection,
    DuplicateError,
    EntityStore,
    Filter,
    apply_update,
    matches,
    sort_and_page,
)


logger = structlog.get_logger(__name__)

UndoStep = Callable[[], None]

# Journal of the unit of work active in the current task, if any
_active_journal: ContextVar[Optional[list[UndoStep]]] = ContextVar(
    "approval_ledger_undo_journal", default=None
)


class InMemoryEntityStore(EntityStore):
    """
    Dictionary-backed store with atomic single-entity updates and
    journaled units of work.
    """

    supports_transactions = True

    def __init__(self):
        self._lock = threading.RLock()
        self._data: dict[Collection, dict[Any, BaseModel]] = {
            collection: {} for collection in Collection
        }

    # =========================================================================
    # JOURNAL
    # =========================================================================

    def _journal(self, step: UndoStep) -> None:
        journal = _active_journal.get()
        if journal is not None:
            journal.append(step)

    def _undo_restore(self, collection: Collection, before: BaseModel) -> UndoStep:
        def step() -> None:
            self._data[collection][before.id] = before
        return step

    def _undo_insert(self, collection: Collection, entity_id: Any) -> UndoStep:
        def step() -> None:
            self._data[collection].pop(entity_id, None)
        return step

    def _undo_update(
        self,
        collection: Collection,
        entity_id: Any,
        set_before: Mapping[str, Any],
        inc_fields: Optional[Mapping[str, Any]] = None,
    ) -> UndoStep:
        # Revert only the touched fields; reverse increments additively
        def step() -> None:
            current = self._data[collection].get(entity_id)
            if current is None:
                return
            negated = {k: -Decimal(str(v)) for k, v in (inc_fields or {}).items()}
            self._data[collection][entity_id] = apply_update(
                current, set_fields=set_before, inc_fields=negated
            )
        return step

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if _active_journal.get() is not None:
            # Nested: the outer unit of work owns the journal
            yield
            return

        journal: list[UndoStep] = []
        token = _active_journal.set(journal)
        try:
            yield
        except BaseException:
            with self._lock:
                for step in reversed(journal):
                    step()
            logger.warning("unit_of_work_rolled_back", steps=len(journal))
            raise
        finally:
            _active_journal.reset(token)

    # =========================================================================
    # READS
    # =========================================================================

    def _matching(self, collection: Collection, filter: Filter) -> list[BaseModel]:
        return [
            entity for entity in self._data[collection].values()
            if matches(entity, filter)
        ]

    async def find_one(
        self,
        collection: Collection,
        filter: Filter,
    ) -> Optional[BaseModel]:
        with self._lock:
            found = self._matching(collection, filter)
            return found[0].model_copy(deep=True) if found else None

    async def find(
        self,
        collection: Collection,
        filter: Filter,
        sort_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[BaseModel]:
        with self._lock:
            found = [e.model_copy(deep=True) for e in self._matching(collection, filter)]
        return sort_and_page(found, sort_by, descending, limit, offset)

    async def count(self, collection: Collection, filter: Filter) -> int:
        with self._lock:
            return len(self._matching(collection, filter))

    # =========================================================================
    # WRITES
    # =========================================================================

    async def insert(self, collection: Collection, entity: BaseModel) -> None:
        with self._lock:
            if entity.id in self._data[collection]:
                raise DuplicateError(
                    f"{collection.value} entity already exists: {entity.id}"
                )
            self._data[collection][entity.id] = entity.model_copy(deep=True)
            self._journal(self._undo_insert(collection, entity.id))

    def _update_locked(
        self,
        collection: Collection,
        entity: BaseModel,
        set_fields: Optional[Mapping[str, Any]],
        inc_fields: Optional[Mapping[str, Any]],
    ) -> BaseModel:
        updated = apply_update(entity, set_fields, inc_fields)
        self._data[collection][entity.id] = updated
        set_before = {k: getattr(entity, k) for k in (set_fields or {})}
        self._journal(
            self._undo_update(collection, entity.id, set_before, inc_fields)
        )
        return updated

    async def find_one_and_update(
        self,
        collection: Collection,
        filter: Filter,
        set_fields: Optional[Mapping[str, Any]] = None,
        inc_fields: Optional[Mapping[str, Any]] = None,
    ) -> Optional[BaseModel]:
        self._guard_mutable(collection)
        with self._lock:
            found = self._matching(collection, filter)
            if not found:
                return None
            updated = self._update_locked(collection, found[0], set_fields, inc_fields)
            return updated.model_copy(deep=True)

    async def update_many(
        self,
        collection: Collection,
        filter: Filter,
        set_fields: Optional[Mapping[str, Any]] = None,
        inc_fields: Optional[Mapping[str, Any]] = None,
    ) -> int:
        self._guard_mutable(collection)
        with self._lock:
            found = self._matching(collection, filter)
            for entity in found:
                self._update_locked(collection, entity, set_fields, inc_fields)
            return len(found)

    async def delete_one(self, collection: Collection, filter: Filter) -> bool:
        self._guard_mutable(collection)
        with self._lock:
            found = self._matching(collection, filter)
            if not found:
                return False
            removed = self._data[collection].pop(found[0].id)
            self._journal(self._undo_restore(collection, removed))
            return True
