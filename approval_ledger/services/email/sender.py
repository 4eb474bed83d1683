"""
Outbound Email

DESIGN DECISION: Delivery is a pluggable EmailSender. The workflow never
awaits it: EmailDispatcher schedules each send as its own asyncio task
and returns immediately. A failed send is logged from the task's
done-callback and has no effect on the operation that triggered it.

There is no ordering guarantee between an email and the response to the
request that caused it.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from approval_ledger.config import EmailSettings


logger = structlog.get_logger(__name__)


class EmailMessage(BaseModel):
    """A single outbound email."""

    to: str = Field(..., min_length=3)
    sender: str = Field(default="", description="From header, e.g. 'Name <address>'")
    subject: str
    text_body: str
    html_body: Optional[str] = None
    kind: str = Field(
        default="generic",
        description="What the email is for (verification, password_reset, ...)"
    )


class EmailSender(ABC):
    """Delivers one message. Implementations may raise on failure."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> None:
        pass


class LoggingEmailSender(EmailSender):
    """
    Sender that only logs.

    Used in development and tests; keeps every message it was handed in
    `outbox` so a test can inspect it.
    """

    def __init__(self):
        self.outbox: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> None:
        self.outbox.append(message)
        logger.info(
            "email_sent",
            to=message.to,
            sender=message.sender,
            subject=message.subject,
            kind=message.kind,
        )


class EmailDispatcher:
    """Fire-and-forget front end for an EmailSender."""

    def __init__(self, sender: EmailSender):
        self._sender = sender
        self._pending: set[asyncio.Task] = set()

    def dispatch(self, message: EmailMessage) -> asyncio.Task:
        """Schedule a send on the running loop and return without waiting."""
        task = asyncio.get_running_loop().create_task(self._sender.send(message))
        # The loop only keeps weak references to tasks
        self._pending.add(task)
        task.add_done_callback(self._on_done(message))
        return task

    def _on_done(self, message: EmailMessage):
        def callback(task: asyncio.Task) -> None:
            self._pending.discard(task)
            if task.cancelled():
                logger.warning("email_cancelled", to=message.to, kind=message.kind)
                return
            error = task.exception()
            if error is not None:
                logger.error(
                    "email_send_failed",
                    to=message.to,
                    kind=message.kind,
                    error=str(error),
                    error_type=type(error).__name__,
                )
        return callback

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every in-flight send. Used at shutdown."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# =============================================================================
# MESSAGE TEMPLATES
# =============================================================================

def _from_header(settings: EmailSettings) -> str:
    return f"{settings.from_name} <{settings.from_address}>"


def verification_email(to: str, code: str, settings: EmailSettings) -> EmailMessage:
    return EmailMessage(
        to=to,
        sender=_from_header(settings),
        subject=f"Verify your {settings.app_name} account",
        text_body=(
            f"Your verification code is {code}.\n\n"
            f"Enter it at {settings.base_url}/verify to activate your account."
        ),
        kind="verification",
    )


def password_reset_email(to: str, token: str, settings: EmailSettings) -> EmailMessage:
    return EmailMessage(
        to=to,
        sender=_from_header(settings),
        subject=f"Reset your {settings.app_name} password",
        text_body=(
            "Someone asked to reset the password for this account.\n\n"
            f"Open {settings.base_url}/reset-password?token={token} to choose a new one. "
            "If this wasn't you, ignore this email."
        ),
        kind="password_reset",
    )
