"""
Approval Ledger - Source Package

Company income/expense tracking where every transaction must be approved
before it touches account balances or budget consumption.

DESIGN PRINCIPLES:
1. Pending until approved - nothing moves money on creation
2. A transaction is applied to the ledger at most once
3. Permissions only grow with role level
4. Every mutating action leaves an audit entry
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Approval Ledger Team"
