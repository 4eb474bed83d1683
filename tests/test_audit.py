"""Tests for the audit recorder."""

import pytest
from datetime import timedelta

from structlog.testing import capture_logs

from approval_ledger.audit import AuditRecorder
from approval_ledger.models import AuditAction, AuditEntity, Role, TransactionType
from approval_ledger.services.storage import Collection, InMemoryEntityStore, StorageError

from conftest import NOW


class BrokenStore(InMemoryEntityStore):
    async def insert(self, collection, entity):
        raise StorageError("disk on fire")


class TestAuditRecorder:
    """Tests for recording and failure isolation."""

    @pytest.mark.asyncio
    async def test_record_persists_entry(self, store, clock, actors):
        admin = actors[Role.ADMIN]
        recorder = AuditRecorder(store, clock)

        assert await recorder.record(
            AuditAction.UPDATE, AuditEntity.ACCOUNT, admin.id, admin, changes={"name": "Main"}
        )

        entries = await store.find(Collection.AUDIT_LOGS, {})
        assert len(entries) == 1
        assert entries[0].action == AuditAction.UPDATE
        assert entries[0].changes == {"name": "Main"}
        assert entries[0].created_at == NOW
        assert entries[0].company_id == admin.company_id
        assert entries[0].user_agent == "pytest"

    @pytest.mark.asyncio
    async def test_timestamps_follow_clock(self, store, clock, actors):
        recorder = AuditRecorder(store, clock)
        actor = actors[Role.EMPLOYEE]

        await recorder.record(AuditAction.LOGIN, AuditEntity.USER, actor.id, actor)
        clock.advance(minutes=5)
        await recorder.record(AuditAction.LOGOUT, AuditEntity.USER, actor.id, actor)

        entries = await store.find(Collection.AUDIT_LOGS, {}, sort_by="created_at")
        assert [e.created_at for e in entries] == [NOW, NOW + timedelta(minutes=5)]

    @pytest.mark.asyncio
    async def test_storage_failure_is_swallowed(self, clock, actors):
        """Test that a failed write is logged and reported, never raised."""
        actor = actors[Role.ADMIN]

        with capture_logs() as logs:
            recorder = AuditRecorder(BrokenStore(), clock)
            stored = await recorder.record(AuditAction.DELETE, AuditEntity.BUDGET, actor.id, actor)

        assert stored is False
        events = [log["event"] for log in logs]
        assert events == ["audit_entry", "audit_storage_failed"]
        failure = logs[1]
        assert failure["log_level"] == "error"
        assert failure["error_type"] == "StorageError"

    @pytest.mark.asyncio
    async def test_without_store_only_logs(self, clock, actors):
        actor = actors[Role.EMPLOYEE]

        with capture_logs() as logs:
            recorder = AuditRecorder(None, clock)
            assert await recorder.record(AuditAction.LOGIN, AuditEntity.USER, actor.id, actor)

        assert logs[0]["event"] == "audit_entry"
        assert logs[0]["action"] == "login"

    @pytest.mark.asyncio
    async def test_transaction_shortcuts(self, store, clock, seed, actors):
        recorder = AuditRecorder(store, clock)
        txn = await seed.pending(TransactionType.EXPENSE, "12", actors[Role.EMPLOYEE])

        await recorder.transaction_created(txn, actors[Role.EMPLOYEE])
        await recorder.transaction_rejected(txn, actors[Role.HOLDER])

        entries = await store.find(Collection.AUDIT_LOGS, {"entity_id": txn.id})
        assert [e.action for e in entries] == [AuditAction.CREATE, AuditAction.REJECT]
        assert entries[0].changes["type"] == "expense"
        assert entries[1].user_id == actors[Role.HOLDER].id
