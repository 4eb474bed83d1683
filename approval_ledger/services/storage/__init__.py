"""
Storage Services Package

Provides the abstract entity store and its implementations.
In-memory for tests and single-process use, Google Sheets for a
spreadsheet-backed ledger. Designed to be swappable.
"""

from approval_ledger.services.storage.interface import (
    APPEND_ONLY,
    COLLECTION_MODELS,
    AppendOnlyViolation,
    Collection,
    DuplicateError,
    EntityStore,
    StorageConnectionError,
    StorageError,
)
from approval_ledger.services.storage.memory import InMemoryEntityStore
from approval_ledger.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsEntityStore,
)

__all__ = [
    # Interface
    "APPEND_ONLY",
    "COLLECTION_MODELS",
    "Collection",
    "EntityStore",
    # Exceptions
    "AppendOnlyViolation",
    "DuplicateError",
    "StorageConnectionError",
    "StorageError",
    # Implementations
    "InMemoryEntityStore",
    "GoogleSheetsClient",
    "GoogleSheetsEntityStore",
]
