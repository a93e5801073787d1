"""Error taxonomy shared by the auth gate, the stores and the HTTP layer.

Every error carries a stable ``code`` and the HTTP status it maps to.
``NotFound`` is raised both for absent rows and for rows owned by someone
else, so callers cannot tell the two apart.
"""
from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    """Base class for every error the API reports to clients."""

    code = "APP_ERROR"
    http_status = 500

    def __init__(self, message: str, *, field: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details

    def to_response(self) -> dict:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.field is not None:
            body["field"] = self.field
        if self.details is not None:
            body["details"] = self.details
        return {"error": body}


class Unauthenticated(AppError):
    code = "UNAUTHENTICATED"
    http_status = 401

    def __init__(self, message: str = "Authentication required", **kwargs):
        super().__init__(message, **kwargs)


class Forbidden(AppError):
    code = "FORBIDDEN"
    http_status = 403

    def __init__(self, message: str = "You do not have access to this resource", **kwargs):
        super().__init__(message, **kwargs)


class NotFound(AppError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, resource: str = "Resource", **kwargs):
        super().__init__(f"{resource} not found", **kwargs)
        self.resource = resource


class Conflict(AppError):
    code = "CONFLICT"
    http_status = 409


class AlreadyExists(Conflict):
    """A unique pair (edge, application, company link) is already present."""

    code = "ALREADY_EXISTS"


class ValidationFailed(AppError):
    code = "VALIDATION_ERROR"
    http_status = 422


class Internal(AppError):
    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str = "An unexpected error occurred", **kwargs):
        super().__init__(message, **kwargs)


# --- Token verification failures ---
# Raised by tokens.TokenService.verify; the auth gate turns all of them into
# a generic Unauthenticated so the reason never reaches the client.


class TokenError(Exception):
    reason = "invalid"


class ExpiredToken(TokenError):
    reason = "expired"


class InvalidSignature(TokenError):
    reason = "bad_signature"


class MalformedToken(TokenError):
    reason = "malformed"
