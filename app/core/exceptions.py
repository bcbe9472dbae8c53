from __future__ import annotations

from typing import Any


class LifecycleError(ValueError):
    """Base class for failures raised by the lifecycle services.

    Every subclass carries a stable ``code`` and the HTTP status the API layer
    renders it with, so routers never translate these by hand.
    """

    status_code = 400
    code = "lifecycle_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(LifecycleError):
    status_code = 422
    code = "validation_error"


class InvalidField(ValidationError):
    code = "invalid_field"


class MissingReason(ValidationError):
    code = "missing_reason"


class PermissionDenied(LifecycleError):
    status_code = 403
    code = "permission_denied"


class InvalidState(LifecycleError):
    status_code = 400
    code = "invalid_state"


class InvalidTransition(InvalidState):
    code = "invalid_transition"


class NotFound(LifecycleError):
    status_code = 404
    code = "not_found"


class ConcurrentModification(LifecycleError):
    status_code = 409
    code = "concurrent_modification"


__all__ = [
    "LifecycleError",
    "ValidationError",
    "InvalidField",
    "MissingReason",
    "PermissionDenied",
    "InvalidState",
    "InvalidTransition",
    "NotFound",
    "ConcurrentModification",
]
