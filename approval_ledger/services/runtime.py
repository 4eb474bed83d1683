"""
Clock and identity collaborators.

Injected into the workflow so tests can pin "now" and ids.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from approval_ledger.models.finance import utcnow


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware UTC."""
        pass


class SystemClock(Clock):
    def now(self) -> datetime:
        return utcnow()


class FixedClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, start: datetime):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


class IdentityGenerator:
    """Produces globally unique record ids."""

    def __call__(self) -> UUID:
        return uuid4()
