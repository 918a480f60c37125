# Overview: Business error hierarchy shared by every service.

"""
Every error raised for a business reason derives from DealflowError.

The orchestrator rolls back the enclosing transaction before any of these
leave a service, so callers can report them as structured results:

    except DealflowError as e:
        return jsonify(e.to_dict()), e.status_code

Infrastructure failures (SQLAlchemy errors) are not wrapped.
"""

from __future__ import annotations


class DealflowError(Exception):
    """Base class for recoverable business errors."""

    status_code = 400
    code = "ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DealflowError, ValueError):
    """400-level input problem."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(DealflowError, LookupError):
    """Referenced entity does not exist (or is outside the caller's scope)."""

    status_code = 404
    code = "NOT_FOUND"


class AuthorizationError(DealflowError):
    """Caller's role and permissions do not allow the operation."""

    status_code = 403
    code = "FORBIDDEN"


class ConflictError(DealflowError, ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""

    status_code = 409
    code = "CONFLICT"


class InvalidTransitionError(DealflowError):
    """A deal status change that is not in the transition table."""

    status_code = 409
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, message: str | None = None):
        super().__init__(
            message or f"Cannot move deal from {from_status} to {to_status}",
            details={"from_status": from_status, "to_status": to_status},
        )
        self.from_status = from_status
        self.to_status = to_status


class InsufficientStockError(DealflowError):
    """An OUT movement asked for more than the product has on hand."""

    status_code = 409
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: int, requested: int, available: int, product_name: str | None = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, available {available}",
            details={
                "product_id": product_id,
                "requested": requested,
                "available": available,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available
