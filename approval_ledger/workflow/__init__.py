"""
Workflow package - the transaction approval state machine and the
services around it.
"""

from approval_ledger.workflow.budgets import BudgetTracker
from approval_ledger.workflow.catalog import CatalogService
from approval_ledger.workflow.ledger import LedgerUpdater
from approval_ledger.workflow.transactions import TransactionLifecycle
from approval_ledger.workflow.users import UserService

__all__ = [
    "BudgetTracker",
    "CatalogService",
    "LedgerUpdater",
    "TransactionLifecycle",
    "UserService",
]
