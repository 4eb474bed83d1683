"""
Request Authentication and Authorization Guards

The HTTP layer owns session cookies; it hands us a RequestContext holding
the session's user id. We resolve that to an Actor or refuse.
"""

from typing import Optional
from uuid import UUID

import structlog

from approval_ledger.errors import InternalError, UnauthenticatedError, UnauthorizedError
from approval_ledger.models.roles import role_display_name
from approval_ledger.models.user import Actor, RequestContext, User
from approval_ledger.services.storage import Collection, EntityStore


logger = structlog.get_logger(__name__)


class Authenticator:
    """Resolves request context into an acting user."""

    def __init__(self, store: EntityStore):
        self._store = store

    async def authenticate(self, context: RequestContext) -> Actor:
        """
        Look up the session's user.

        Raises:
            UnauthenticatedError: No session, malformed id, or unknown user
            InternalError: Storage failure
        """
        if not context.session_user_id:
            raise UnauthenticatedError("Authentication required")

        try:
            user_id = UUID(context.session_user_id)
        except ValueError:
            logger.warning("session_user_id_malformed", ip_address=context.ip_address)
            raise UnauthenticatedError("Authentication required")

        try:
            user: Optional[User] = await self._store.find_one(Collection.USERS, {"id": user_id})
        except Exception as e:
            logger.error("session_lookup_failed", user_id=str(user_id), error=str(e))
            raise InternalError("Failed to load session user") from e
        if user is None:
            logger.info("session_user_missing", user_id=str(user_id))
            raise UnauthenticatedError("Session expired, please sign in again")

        return Actor(
            user=user,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )


def ensure_permission(actor: Actor, allowed: bool, action: str) -> None:
    """
    Raise UnauthorizedError unless `allowed`.

    `allowed` is the result of a RoleHierarchy predicate for the actor's
    role; `action` only names the attempt for the log and message.
    """
    if allowed:
        return
    logger.warning(
        "permission_denied",
        action=action,
        user_id=str(actor.id),
        role=actor.role.value,
    )
    raise UnauthorizedError(
        f"{role_display_name(actor.role)} role may not {action}"
    )
