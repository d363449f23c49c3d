"""Error taxonomy shared by the policy engine and the procedure layer.

Every failure a caller can observe is one of five kinds.  ``NotFound`` covers
both absent rows and rows hidden by policy so that callers cannot probe for
the existence of other tenants' data.
"""

from __future__ import annotations

__all__ = [
    "Conflict",
    "CoreError",
    "InvariantViolation",
    "NotFound",
    "PermissionDenied",
    "ValidationError",
]


class CoreError(Exception):
    """Base class for discriminated core failures."""

    kind = "core_error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict[str, str]:
        return {"error": self.kind, "detail": self.message}


class ValidationError(CoreError):
    """Malformed input, raised before any mutation."""

    kind = "validation_error"
    status_code = 422


class PermissionDenied(CoreError):
    """A policy predicate or an explicit role check failed."""

    kind = "permission_denied"
    status_code = 403


class NotFound(CoreError):
    """Referenced row is absent or invisible under policy."""

    kind = "not_found"
    status_code = 404


class Conflict(CoreError):
    """The row already transitioned (used, expired, revoked, sold, duplicate)."""

    kind = "conflict"
    status_code = 409


class InvariantViolation(CoreError):
    """The operation would break a cross-row invariant."""

    kind = "invariant_violation"
    status_code = 409
