"""Services package."""

from approval_ledger.services.auth import Authenticator, ensure_permission
from approval_ledger.services.email import (
    EmailDispatcher,
    EmailMessage,
    EmailSender,
    LoggingEmailSender,
)
from approval_ledger.services.runtime import (
    Clock,
    FixedClock,
    IdentityGenerator,
    SystemClock,
)
from approval_ledger.services.storage import (
    Collection,
    DuplicateError,
    EntityStore,
    GoogleSheetsClient,
    GoogleSheetsEntityStore,
    InMemoryEntityStore,
    StorageConnectionError,
    StorageError,
)

__all__ = [
    # Auth
    "Authenticator",
    "ensure_permission",
    # Email
    "EmailDispatcher",
    "EmailMessage",
    "EmailSender",
    "LoggingEmailSender",
    # Runtime collaborators
    "Clock",
    "FixedClock",
    "IdentityGenerator",
    "SystemClock",
    # Storage
    "Collection",
    "DuplicateError",
    "EntityStore",
    "GoogleSheetsClient",
    "GoogleSheetsEntityStore",
    "InMemoryEntityStore",
    "StorageConnectionError",
    "StorageError",
]
