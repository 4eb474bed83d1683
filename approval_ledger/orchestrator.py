"""
Component Wiring for Approval Ledger

This module ties together all the components. Nothing in the package
reaches for a global store or mailer: every service receives its
collaborators here, at construction time, so a test can substitute any
of them.

DESIGN DECISION: One store, one audit recorder, one clock and one id
generator are shared by every service built from the same call. Ledger
and budget updates therefore land in the same store (and the same unit
of work) as the status transition that triggers them.
"""

from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

import structlog

from approval_ledger.audit import AuditRecorder
from approval_ledger.config import AppSettings, get_settings
from approval_ledger.log_config import configure_logging
from approval_ledger.queries import ReportQueries
from approval_ledger.services.auth import Authenticator
from approval_ledger.services.email import (
    EmailDispatcher,
    EmailSender,
    LoggingEmailSender,
)
from approval_ledger.services.runtime import Clock, IdentityGenerator, SystemClock
from approval_ledger.services.storage import (
    EntityStore,
    GoogleSheetsClient,
    GoogleSheetsEntityStore,
    InMemoryEntityStore,
)
from approval_ledger.validation import InputValidator
from approval_ledger.workflow import (
    BudgetTracker,
    CatalogService,
    LedgerUpdater,
    TransactionLifecycle,
    UserService,
)


logger = structlog.get_logger(__name__)


@dataclass
class AppComponents:
    """Everything the HTTP layer needs, already wired."""

    store: EntityStore
    authenticator: Authenticator
    transactions: TransactionLifecycle
    catalog: CatalogService
    users: UserService
    reports: ReportQueries
    audit: AuditRecorder
    emails: EmailDispatcher
    clock: Clock


def create_store(app_settings: AppSettings) -> EntityStore:
    """Build the configured storage backend."""
    if app_settings.storage_backend == "google_sheets":
        return GoogleSheetsEntityStore(GoogleSheetsClient())
    return InMemoryEntityStore()


def create_app_components(
    store: Optional[EntityStore] = None,
    email_sender: Optional[EmailSender] = None,
    clock: Optional[Clock] = None,
    new_id: Optional[Callable[[], UUID]] = None,
    app_settings: Optional[AppSettings] = None,
    configure_logs: bool = True,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        store: Storage backend. Built from settings if None.
        email_sender: Delivery for outbound email. Log-only if None.
        clock: Time source. System clock if None.
        new_id: Id generator. Random UUIDs if None.
        app_settings: Application settings. Loaded from the environment if None.
        configure_logs: Configure structlog from LoggingSettings.

    Returns:
        AppComponents with every service wired to the same store
    """
    settings = get_settings()
    app_settings = app_settings or settings.app

    if configure_logs:
        configure_logging(settings.logging)

    store = store or create_store(app_settings)
    clock = clock or SystemClock()
    new_id = new_id or IdentityGenerator()

    audit = AuditRecorder(store, clock)
    validator = InputValidator(store)
    emails = EmailDispatcher(email_sender or LoggingEmailSender())

    transactions = TransactionLifecycle(
        store,
        audit=audit,
        ledger=LedgerUpdater(store),
        budgets=BudgetTracker(store),
        validator=validator,
        clock=clock,
        new_id=new_id,
        default_currency=app_settings.default_currency,
    )
    catalog = CatalogService(
        store,
        audit=audit,
        validator=validator,
        clock=clock,
        new_id=new_id,
        default_currency=app_settings.default_currency,
    )
    users = UserService(
        store,
        emails,
        audit=audit,
        clock=clock,
        new_id=new_id,
        app_settings=app_settings,
        email_settings=settings.email,
    )

    logger.info(
        "app_components_created",
        storage_backend=type(store).__name__,
        supports_transactions=store.supports_transactions,
        environment=app_settings.app_environment,
    )
    if not store.supports_transactions:
        logger.warning(
            "store_without_units_of_work",
            detail="approval effects are not rolled back if they fail after the status change",
        )

    return AppComponents(
        store=store,
        authenticator=Authenticator(store),
        transactions=transactions,
        catalog=catalog,
        users=users,
        reports=ReportQueries(store, page_size=app_settings.page_size),
        audit=audit,
        emails=emails,
        clock=clock,
    )
