"""Queries package - deterministic read-side queries."""

from approval_ledger.queries.reports import (
    AuditFilter,
    AuditPage,
    CategoryAmount,
    FinancialSummary,
    MonthlyAmount,
    ReportQueries,
    TransactionFilter,
    TransactionPage,
)

__all__ = [
    "AuditFilter",
    "AuditPage",
    "CategoryAmount",
    "FinancialSummary",
    "MonthlyAmount",
    "ReportQueries",
    "TransactionFilter",
    "TransactionPage",
]
