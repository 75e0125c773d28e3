"""Error taxonomy shared by the lending core and the HTTP layer.

Every error carries the HTTP status the API answers with and a short
machine-readable ``code``.  ``extra`` holds structured data that is merged
into the JSON error body (for example the conflicting reservations).
"""
from __future__ import annotations

from typing import Any, Optional


class LendingError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str, *, extra: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


class ValidationError(LendingError):
    status_code = 400
    code = "validation_error"


class StateError(LendingError):
    """A transition was attempted from a status that does not allow it."""

    status_code = 400
    code = "invalid_state"


class PickupTokenError(LendingError):
    status_code = 400
    code = "pickup_token_error"


class PickupTokenMissing(PickupTokenError):
    code = "pickup_token_missing"


class PickupTokenMismatch(PickupTokenError):
    code = "pickup_token_mismatch"


class PickupTokenExpired(PickupTokenError):
    code = "pickup_token_expired"


class AuthenticationError(LendingError):
    status_code = 401
    code = "unauthenticated"


class PermissionDeniedError(LendingError):
    status_code = 403
    code = "permission_denied"


class NotFoundError(LendingError):
    status_code = 404
    code = "not_found"


class ConflictError(LendingError):
    status_code = 409
    code = "conflict"


class TransientStoreError(LendingError):
    """The store could not be reached or was locked; safe for the caller to retry."""

    status_code = 503
    code = "store_unavailable"
