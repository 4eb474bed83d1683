"""
User and Request Actor Models

`role` is the only authorization input and `company_id` the only tenant
isolation input. Everything else here supports account verification.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from approval_ledger.models.finance import utcnow
from approval_ledger.models.roles import Role


class User(BaseModel):
    """A person belonging to exactly one company."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    company_id: UUID
    email: str = Field(..., min_length=3, max_length=254)
    name: str = Field(default="", max_length=200)
    role: Role = Role.EMPLOYEE

    # Email verification
    email_verified: bool = False
    verify_token: Optional[str] = None
    verify_expires_at: Optional[datetime] = None
    last_email_sent_at: Optional[datetime] = None

    # Password reset
    reset_token: Optional[str] = None
    reset_expires_at: Optional[datetime] = None

    last_login_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        return self.name or self.email


class RequestContext(BaseModel):
    """
    What the HTTP layer knows about an inbound request.

    Session cookie handling happens outside this package; by the time a
    request reaches the workflow it has been reduced to a user id.
    """

    session_user_id: Optional[str] = None
    ip_address: str = ""
    user_agent: str = ""


class Actor(BaseModel):
    """An authenticated user acting through one request."""

    user: User
    ip_address: str = ""
    user_agent: str = ""

    @property
    def id(self) -> UUID:
        return self.user.id

    @property
    def company_id(self) -> UUID:
        return self.user.company_id

    @property
    def role(self) -> Role:
        return self.user.role
