"""Domain errors raised by the application services.

Each error carries the HTTP status it maps to; the API layer renders every
``DomainError`` as ``{"error": ...}`` with that status.
"""

from typing import Any


class DomainError(Exception):
    status_code: int = 500

    def __init__(self, detail: Any = None):
        self.detail = detail if detail is not None else self.default_detail()
        super().__init__(self.detail if isinstance(self.detail, str) else repr(self.detail))

    def default_detail(self) -> str:
        return "Internal server error"


class InvalidInputError(DomainError):
    """Malformed or inconsistent input (unknown product, strain mismatch, ...)."""

    status_code = 400

    def default_detail(self) -> str:
        return "Invalid request data"


class AuthenticationError(DomainError):
    status_code = 401

    def default_detail(self) -> str:
        return "Unauthorized"


class UnauthorizedError(DomainError):
    """The actor is known but its role may not perform the operation."""

    status_code = 403

    def default_detail(self) -> str:
        return "Forbidden"


class NotFoundError(DomainError):
    status_code = 404

    def default_detail(self) -> str:
        return "Not found"


class InvalidTransitionError(DomainError):
    status_code = 400

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid status transition from {current} to {requested}")


class ConflictError(DomainError):
    status_code = 409

    def default_detail(self) -> str:
        return "The resource was modified by another request"


class PersistenceError(DomainError):
    status_code = 500


class NotificationError(DomainError):
    """Email delivery failed. Logged and audited, never returned to clients."""

    status_code = 502

    def default_detail(self) -> str:
        return "Failed to send notification"
