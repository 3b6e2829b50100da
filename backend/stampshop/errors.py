# Overview: Service-layer exception hierarchy; each error maps to an HTTP status and a stable kind.

from __future__ import annotations


class ServiceError(Exception):
    """Base class for business-rule failures raised by services."""

    status_code = 400
    kind = "error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind, "details": self.details}


class ValidationError(ServiceError):
    """400-level input problem."""

    status_code = 400
    kind = "validation_error"


class NotFoundError(ServiceError):
    status_code = 404
    kind = "not_found"


class ConflictError(ServiceError):
    """409-level business rule conflict (e.g., duplicate product code)."""

    status_code = 409
    kind = "conflict"


class InsufficientStockError(ServiceError):
    status_code = 409
    kind = "insufficient_stock"


class InvalidStateError(ServiceError):
    """Operation not allowed in the entity's current state (e.g., cancelled order)."""

    status_code = 409
    kind = "invalid_state"


class ForbiddenError(ServiceError):
    status_code = 403
    kind = "forbidden"


class AuthenticationError(ServiceError):
    status_code = 401
    kind = "unauthorized"
