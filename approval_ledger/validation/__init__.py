"""Validation package - two-stage input validation."""

from approval_ledger.validation.validator import InputValidator

__all__ = ["InputValidator"]
