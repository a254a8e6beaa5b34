"""Error taxonomy shared by the contribution services."""
from __future__ import annotations


class ChamaServiceError(RuntimeError):
    """Base class for chama service errors."""


class ValidationError(ChamaServiceError):
    """Raised when caller-supplied data fails a business rule."""


class NotFoundError(ChamaServiceError):
    """Raised when a user, chama, membership or pending request is missing."""


class ForbiddenError(ChamaServiceError):
    """Raised when the caller may not act on the resource."""


class ConflictError(ChamaServiceError):
    """Raised when a write collides with an existing record."""


class DuplicateCorrelationError(ConflictError):
    """Raised when a pending request already exists for a correlation id."""


class ConsistencyError(ChamaServiceError):
    """Raised when a ledger row was kept but the balance increment could not be applied."""


class GatewayError(ChamaServiceError):
    """Base class for payment gateway failures."""


class GatewayAuthError(GatewayError):
    """Raised when the gateway rejects the configured consumer key/secret."""


class GatewayRequestError(GatewayError):
    """Raised when an STK push submission is rejected or cannot be delivered."""

    def __init__(self, message: str, *, cause: object | None = None) -> None:
        super().__init__(message)
        self.cause = cause


__all__ = [
    "ChamaServiceError",
    "ConflictError",
    "ConsistencyError",
    "DuplicateCorrelationError",
    "ForbiddenError",
    "GatewayAuthError",
    "GatewayError",
    "GatewayRequestError",
    "NotFoundError",
    "ValidationError",
]
