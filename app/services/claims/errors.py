"""
Errors surfaced by the claims service.

Only these kinds reach callers; app/main.py maps each one onto an HTTP status
and the {success: false, error: {...}} envelope.
"""

from typing import Any, Optional


class ClaimsError(Exception):
    code = "CLAIMS_ERROR"
    http_status = 400

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(ClaimsError):
    code = "NOT_FOUND"
    http_status = 404


class BadRequestError(ClaimsError):
    """Invalid transition, missing data, not-ready submission, edit on a frozen claim."""

    code = "BAD_REQUEST"
    http_status = 400


class ConflictError(BadRequestError):
    """Optimistic-lock failure: the claim changed since the caller read it."""

    code = "CONFLICT"
    http_status = 409


class ForbiddenError(ClaimsError):
    code = "FORBIDDEN"
    http_status = 403
