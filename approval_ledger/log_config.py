"""
Structured Logging Setup

All modules log through structlog with snake_case event names and
keyword context, e.g.:

    logger.info("transaction_approved", transaction_id=str(txn.id))

configure_logging() is idempotent and is called by create_app_components().
"""

import logging
import sys
from typing import Optional

import structlog

from approval_ledger.config import LoggingSettings


_configured = False


def configure_logging(settings: Optional[LoggingSettings] = None) -> None:
    """Configure structlog and the stdlib root logger once per process."""
    global _configured
    if _configured:
        return

    settings = settings or LoggingSettings()
    level = getattr(logging, settings.level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True
