"""
Domain error taxonomy.

Every error carries a human-readable ``message`` that is safe to show to
the caller verbatim, plus an HTTP ``status_code`` and machine ``code`` the
API layer renders.  Nothing here imports FastAPI.
"""

from __future__ import annotations

from typing import Any, Optional


class DispatchError(Exception):
    """Base class for expected, caller-actionable failures."""

    status_code: int = 400
    code: str = "DISPATCH_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(DispatchError):
    """Missing or malformed input, rejected before any store mutation."""

    code = "VALIDATION_ERROR"


class Conflict(DispatchError):
    """A state-transition precondition failed; re-fetch and retry manually."""

    code = "CONFLICT"


class NotFound(DispatchError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        super().__init__(message, {"resource": resource, "id": resource_id})


class Unauthorized(DispatchError):
    status_code = 401
    code = "UNAUTHORIZED"


class Forbidden(DispatchError):
    status_code = 403
    code = "FORBIDDEN"


class TransientInfraError(DispatchError):
    """Store or collaborator unavailable.  Never carries internal detail."""

    status_code = 503
    code = "UNAVAILABLE"

    def __init__(self, message: str = "Network or server error"):
        super().__init__(message)
