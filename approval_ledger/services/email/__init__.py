"""Outbound email: pluggable sender plus a fire-and-forget dispatcher."""

from approval_ledger.services.email.sender import (
    EmailDispatcher,
    EmailMessage,
    EmailSender,
    LoggingEmailSender,
    password_reset_email,
    verification_email,
)

__all__ = [
    "EmailDispatcher",
    "EmailMessage",
    "EmailSender",
    "LoggingEmailSender",
    "password_reset_email",
    "verification_email",
]
