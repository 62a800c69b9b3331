"""
Domain error taxonomy.

Every error carries a machine-readable ``kind`` (the class name unless
overridden), a human-readable message, optional structured ``details``,
the HTTP status the API layer renders it with, and whether the caller may
retry the same request unchanged.
"""

from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    status_code: int = 400
    retryable: bool = False
    kind: Optional[str] = None

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if self.kind is None:
            self.kind = type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


class ValidationError(DomainError):
    status_code = 422


class TooFewWaypoints(ValidationError):
    pass


class TooManyWaypoints(ValidationError):
    pass


class NotFoundError(DomainError):
    status_code = 404

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} {identifier} not found"
        super().__init__(message, {"resource": resource, "id": identifier})


class AuthorizationError(DomainError):
    status_code = 403


class ProfileRequired(AuthorizationError):
    def __init__(self, profile: str):
        super().__init__(
            f"A {profile} profile is required for this action",
            {"profile": profile},
        )


class InvalidTransition(DomainError):
    status_code = 409

    def __init__(self, entity: str, current: Any, action: Any, reason: str = ""):
        current_value = getattr(current, "value", current)
        action_value = getattr(action, "value", action)
        message = f"Cannot apply {action_value} to {entity} in status {current_value}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            {"entity": entity, "current": current_value, "action": action_value},
        )
        self.current = current
        self.action = action


class ExpiredError(DomainError):
    status_code = 410


class ConflictError(DomainError):
    status_code = 409


class DuplicateQuote(ConflictError):
    pass


class ConcurrentModification(ConflictError):
    retryable = True


class NoSuitableVehicle(DomainError):
    status_code = 422


class RateLimited(DomainError):
    status_code = 429
    retryable = True


class StoreUnavailable(DomainError):
    """A backing store (database or Redis) failed or timed out."""

    status_code = 503
    retryable = True
