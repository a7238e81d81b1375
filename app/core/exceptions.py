"""
Domain error taxonomy.

Every fallible service operation raises one of these. Each carries a stable
machine-readable ``kind`` and the HTTP status the API layer maps it to.
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    kind: str = "internal_error"
    status_code: int = 500

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.extra:
            body["details"] = self.extra
        return {"error": body}


class ValidationError(AppError):
    """Malformed or out-of-range input; the caller must correct and resubmit."""

    kind = "validation_error"
    status_code = 400


class AuthError(AppError):
    kind = "auth_error"
    status_code = 401


class ForbiddenError(AppError):
    """Authenticated, but not allowed to act on this entity."""

    kind = "forbidden"
    status_code = 403


class NotFoundError(AppError):
    kind = "not_found"
    status_code = 404


class ConflictError(AppError):
    """State-machine or invariant violation."""

    kind = "conflict"
    status_code = 409


class ConstraintError(AppError):
    """Storage-level uniqueness violation."""

    kind = "constraint_violation"
    status_code = 409
