"""
User Service

Team management and the account-verification flows around sign-up.

Password hashing and session cookies belong to the HTTP layer; this
service only tracks verification codes, reset tokens and roles, and
hands outbound email to the EmailDispatcher without waiting for it.

DESIGN DECISION: Changing a role is reserved to exactly super_admin, not
"super_admin or above". Developers outrank super admins everywhere else
but cannot reassign roles.
"""

import secrets
from datetime import timedelta
from typing import Callable, Optional
from uuid import UUID

import structlog

from approval_ledger.audit import AuditRecorder
from approval_ledger.config import AppSettings, EmailSettings
from approval_ledger.errors import (
    InternalError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from approval_ledger.models.audit import AuditAction, AuditEntity
from approval_ledger.models.roles import (
    Role,
    can_manage_team,
    is_valid_role,
)
from approval_ledger.models.user import Actor, User
from approval_ledger.models.validation import ValidationIssue
from approval_ledger.services.auth import ensure_permission
from approval_ledger.services.email import (
    EmailDispatcher,
    password_reset_email,
    verification_email,
)
from approval_ledger.services.runtime import Clock, IdentityGenerator, SystemClock
from approval_ledger.services.storage import Collection, EntityStore


logger = structlog.get_logger(__name__)


def generate_verification_code() -> str:
    """Six-digit numeric code, 100000-999999."""
    return f"{secrets.randbelow(900000) + 100000:06d}"


def generate_reset_token() -> str:
    return secrets.token_urlsafe(32)


def _invalid(field: str, message: str, fix: Optional[str] = None) -> ValidationError:
    return ValidationError(
        message,
        issues=[ValidationIssue(
            field=field,
            issue_type="invalid_value",
            message=message,
            severity="error",
            suggested_fix=fix,
        )],
    )


class UserService:
    def __init__(
        self,
        store: EntityStore,
        emails: EmailDispatcher,
        audit: Optional[AuditRecorder] = None,
        clock: Optional[Clock] = None,
        new_id: Optional[Callable[[], UUID]] = None,
        app_settings: Optional[AppSettings] = None,
        email_settings: Optional[EmailSettings] = None,
    ):
        self._store = store
        self._emails = emails
        self._clock = clock or SystemClock()
        self._audit = audit or AuditRecorder(store, self._clock)
        self._new_id = new_id or IdentityGenerator()
        self._settings = app_settings or AppSettings()
        self._email_settings = email_settings or EmailSettings()

    async def _find_user(self, filter: dict) -> Optional[User]:
        try:
            return await self._store.find_one(Collection.USERS, filter)
        except Exception as e:
            logger.error("user_lookup_failed", fields=sorted(filter), error=str(e))
            raise InternalError("Failed to load user") from e

    async def _find_by_email(self, email: str) -> Optional[User]:
        return await self._find_user({"email": email.strip().lower()})

    async def _set(self, user_id: UUID, **fields) -> User:
        fields["updated_at"] = self._clock.now()
        try:
            user = await self._store.find_one_and_update(
                Collection.USERS, {"id": user_id}, set_fields=fields
            )
        except Exception as e:
            logger.error("user_update_failed", user_id=str(user_id), error=str(e))
            raise InternalError("Failed to update user") from e
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def _send_verification(self, user: User, code: str) -> None:
        self._emails.dispatch(verification_email(user.email, code, self._email_settings))

    # =========================================================================
    # ROLES AND TEAM
    # =========================================================================

    async def update_user_role(
        self,
        target_user_id: UUID,
        new_role: str,
        actor: Actor,
    ) -> User:
        """
        Assign a new role to a member of the actor's company.

        Raises:
            UnauthorizedError: Actor is not exactly super_admin
            ValidationError: Unknown role
            NotFoundError: Target absent or in another company
        """
        if actor.role != Role.SUPER_ADMIN:
            logger.warning(
                "permission_denied",
                action="change roles",
                user_id=str(actor.id),
                role=actor.role.value,
            )
            raise UnauthorizedError("Only a super admin may change roles")

        if not new_role or not is_valid_role(new_role):
            raise _invalid(
                "role",
                f"Unknown role '{new_role}'",
                fix="Use one of: " + ", ".join(role.value for role in Role),
            )

        target = await self._find_user({"id": target_user_id, "company_id": actor.company_id})
        if target is None:
            raise NotFoundError(f"User {target_user_id} not found")

        role = Role(new_role)
        updated = await self._set(target.id, role=role)

        logger.info(
            "user_role_updated",
            target_user_id=str(target.id),
            old_role=target.role.value,
            new_role=role.value,
            changed_by=str(actor.id),
        )
        await self._audit.record(
            AuditAction.UPDATE,
            AuditEntity.USER,
            target.id,
            actor,
            changes={"old_role": target.role.value, "new_role": role.value},
        )
        return updated

    async def list_team(self, actor: Actor) -> list[User]:
        """Members of the actor's company, by name. Manager level."""
        ensure_permission(actor, can_manage_team(actor.role), "view the team")
        try:
            return await self._store.find(
                Collection.USERS, {"company_id": actor.company_id}, sort_by="name"
            )
        except Exception as e:
            logger.error("team_list_failed", company_id=str(actor.company_id), error=str(e))
            raise InternalError("Failed to load team") from e

    # =========================================================================
    # REGISTRATION AND VERIFICATION
    # =========================================================================

    async def register(
        self,
        email: str,
        company_id: UUID,
        name: str = "",
        role: Role = Role.EMPLOYEE,
    ) -> User:
        """
        Create an unverified user and email them a verification code.

        The email is sent in the background; this returns before it is
        delivered.
        """
        email = email.strip().lower()
        if not email or "@" not in email:
            raise _invalid("email", "A valid email address is required")
        if await self._find_by_email(email) is not None:
            raise _invalid("email", "Email already registered", fix="Sign in instead")

        now = self._clock.now()
        code = generate_verification_code()
        user = User(
            id=self._new_id(),
            company_id=company_id,
            email=email,
            name=name,
            role=role,
            email_verified=False,
            verify_token=code,
            verify_expires_at=now + timedelta(minutes=self._settings.verification_code_ttl_minutes),
            last_email_sent_at=now,
            created_at=now,
            updated_at=now,
        )
        try:
            await self._store.insert(Collection.USERS, user)
        except Exception as e:
            logger.error("user_create_failed", email=email, error=str(e))
            raise InternalError("Failed to create account") from e

        logger.info("user_registered", user_id=str(user.id), company_id=str(company_id))
        self._send_verification(user, code)
        return user

    async def verify_email(self, email: str, code: str) -> User:
        """Mark the user verified if `code` matches and has not expired."""
        user = await self._find_by_email(email)
        now = self._clock.now()
        if (
            user is None
            or not code
            or user.verify_token != code.strip()
            or user.verify_expires_at is None
            or user.verify_expires_at <= now
        ):
            raise _invalid("code", "Invalid or expired verification code")

        verified = await self._set(
            user.id,
            email_verified=True,
            verify_token=None,
            verify_expires_at=None,
        )
        logger.info("email_verified", user_id=str(user.id))
        return verified

    async def resend_verification(self, email: str) -> None:
        """
        Issue a fresh code, at most once per cooldown window.

        Raises:
            NotFoundError: No user with that email
            ValidationError: Called again within the cooldown
        """
        user = await self._find_by_email(email)
        if user is None:
            raise NotFoundError("User not found")

        now = self._clock.now()
        cooldown = timedelta(seconds=self._settings.verification_resend_cooldown_seconds)
        if user.last_email_sent_at is not None and now - user.last_email_sent_at < cooldown:
            wait = int((cooldown - (now - user.last_email_sent_at)).total_seconds())
            raise _invalid(
                "email",
                "Please wait before resending",
                fix=f"You can resend in {wait} seconds",
            )

        code = generate_verification_code()
        await self._set(
            user.id,
            verify_token=code,
            verify_expires_at=now + timedelta(minutes=self._settings.verification_code_ttl_minutes),
            last_email_sent_at=now,
        )
        logger.info("verification_resent", user_id=str(user.id))
        self._send_verification(user, code)

    # =========================================================================
    # PASSWORD RESET
    # =========================================================================

    async def request_password_reset(self, email: str) -> None:
        """
        Email a reset link if the address is known.

        Returns silently for unknown addresses so callers cannot discover
        which emails are registered.
        """
        user = await self._find_by_email(email)
        if user is None:
            logger.info("password_reset_unknown_email")
            return

        token = generate_reset_token()
        await self._set(
            user.id,
            reset_token=token,
            reset_expires_at=self._clock.now() + timedelta(
                minutes=self._settings.password_reset_ttl_minutes
            ),
        )
        logger.info("password_reset_requested", user_id=str(user.id))
        self._emails.dispatch(password_reset_email(user.email, token, self._email_settings))

    async def redeem_password_reset(self, token: str) -> User:
        """
        Consume a reset token. The caller then stores the new password hash.

        Raises:
            ValidationError: Unknown or expired token
        """
        if not token:
            raise _invalid("token", "Invalid or expired reset token")

        user = await self._find_user({"reset_token": token})
        if (
            user is None
            or user.reset_expires_at is None
            or user.reset_expires_at <= self._clock.now()
        ):
            raise _invalid("token", "Invalid or expired reset token")

        redeemed = await self._set(user.id, reset_token=None, reset_expires_at=None)
        logger.info("password_reset_redeemed", user_id=str(user.id))
        return redeemed

    # =========================================================================
    # SESSIONS
    # =========================================================================

    async def record_login(self, actor: Actor) -> User:
        """Stamp last_login_at and audit the sign-in."""
        user = await self._set(actor.id, last_login_at=self._clock.now())
        await self._audit.record(AuditAction.LOGIN, AuditEntity.USER, actor.id, actor)
        return user

    async def record_logout(self, actor: Actor) -> None:
        await self._audit.record(AuditAction.LOGOUT, AuditEntity.USER, actor.id, actor)
