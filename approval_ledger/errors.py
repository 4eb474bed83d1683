"""
Workflow Error Taxonomy

Every failure the workflow surfaces to its caller is one of these.
The HTTP layer (outside this package) maps `status_code` to a response.

DESIGN DECISION: NotFoundError is raised both when an entity does not exist
and when it exists in another company. Callers cannot tell the two apart,
so tenant existence never leaks.
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for all workflow errors."""

    code = "error"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(LedgerError):
    """Malformed or missing input. Always recoverable by the caller."""

    code = "validation"
    status_code = 400

    def __init__(self, message: str, issues: Optional[list] = None):
        super().__init__(message)
        self.issues = issues or []

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["issues"] = [
            issue.model_dump() if hasattr(issue, "model_dump") else issue
            for issue in self.issues
        ]
        return data


class UnauthenticatedError(LedgerError):
    """No resolvable session for the request."""

    code = "unauthenticated"
    status_code = 401


class UnauthorizedError(LedgerError):
    """Identity is known but the role level is insufficient."""

    code = "unauthorized"
    status_code = 403


class NotFoundError(LedgerError):
    """Entity absent or outside the caller's company scope."""

    code = "not_found"
    status_code = 404


class InvalidStateError(LedgerError):
    """Transaction is no longer pending. Not retried."""

    code = "invalid_state"
    status_code = 409


class InternalError(LedgerError):
    """Storage failure. Logged with details, surfaced generically."""

    code = "internal"
    status_code = 500
