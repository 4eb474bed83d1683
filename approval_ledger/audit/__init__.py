"""Audit package - append-only record of every mutating action."""

from approval_ledger.audit.recorder import AuditRecorder

__all__ = ["AuditRecorder"]
