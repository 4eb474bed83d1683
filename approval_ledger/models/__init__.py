"""
Data Models Package

This package contains all Pydantic models used in the Approval Ledger system.
All data flowing through the workflow must conform to these schemas.
"""

from approval_ledger.models.finance import (
    DEFAULT_CATEGORIES,
    Account,
    AccountInput,
    AccountType,
    Budget,
    BudgetInput,
    BudgetPeriod,
    Category,
    CategoryInput,
    CategoryType,
    Transaction,
    TransactionInput,
    TransactionStatus,
    TransactionType,
    TransactionUpdate,
    get_budget_period_dates,
    utcnow,
)
from approval_ledger.models.roles import Role, Tab
from approval_ledger.models.user import Actor, RequestContext, User
from approval_ledger.models.audit import (
    AuditAction,
    AuditEntity,
    AuditLog,
    AuditLogBuilder,
)
from approval_ledger.models.validation import ValidationIssue, ValidationResult

__all__ = [
    # Finance models
    "DEFAULT_CATEGORIES",
    "Account",
    "AccountInput",
    "AccountType",
    "Budget",
    "BudgetInput",
    "BudgetPeriod",
    "Category",
    "CategoryInput",
    "CategoryType",
    "Transaction",
    "TransactionInput",
    "TransactionStatus",
    "TransactionType",
    "TransactionUpdate",
    "get_budget_period_dates",
    "utcnow",
    # Roles
    "Role",
    "Tab",
    # Users
    "Actor",
    "RequestContext",
    "User",
    # Audit models
    "AuditAction",
    "AuditEntity",
    "AuditLog",
    "AuditLogBuilder",
    # Validation
    "ValidationIssue",
    "ValidationResult",
]
