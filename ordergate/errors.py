"""
Error values — tagged kinds with a structured payload.

Every fallible operation returns Result[T, AppError]; nothing is raised
across the public API. The HTTP boundary maps AppError.status directly.

    match await orders.create_order(request):
        case Ok(receipt): ...
        case Error(AppError(kind=ErrorKind.CONFLICT)): ...
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

# ═══════════════════════════════════════════════════════════════════════════════
# Error Kind
# ═══════════════════════════════════════════════════════════════════════════════


class ErrorKind(Enum):
    """Kinds of failures surfaced to callers."""

    NOT_FOUND = auto()  # Order / payment / product absent
    CONFLICT = auto()  # Idempotency payload mismatch, duplicate resource
    INVALID_STATE = auto()  # Transition not allowed from current status
    PROVIDER_ERROR = auto()  # Gateway non-2xx, timeout, malformed response
    SIGNATURE_VERIFICATION_FAILED = auto()  # Webhook rejected
    VALIDATION = auto()  # Bad input: amounts, products, options
    INTERNAL = auto()  # Storage failure


# ═══════════════════════════════════════════════════════════════════════════════
# AppError
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class AppError:
    """
    Structured error payload.

    code: stable machine-readable identifier (e.g. PAYMENT_AMOUNT_MISMATCH).
    status: HTTP-equivalent status for the boundary layer.
    """

    kind: ErrorKind
    code: str
    message: str
    status: int
    details: Mapping[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
        }

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# ═══════════════════════════════════════════════════════════════════════════════
# Factories
# ═══════════════════════════════════════════════════════════════════════════════


class AppErrors:
    @staticmethod
    def not_found(resource: str, identifier: str) -> AppError:
        return AppError(
            ErrorKind.NOT_FOUND,
            "RESOURCE_NOT_FOUND",
            f"{resource} not found: {identifier}",
            404,
            {"resource": resource, "id": identifier},
        )

    @staticmethod
    def order_not_found(identifier: str) -> AppError:
        return AppErrors.not_found("order", identifier)

    @staticmethod
    def payment_not_found(identifier: str) -> AppError:
        return AppErrors.not_found("payment", identifier)

    @staticmethod
    def idempotency_conflict(key: str, reason: str, **details: Any) -> AppError:
        return AppError(
            ErrorKind.CONFLICT,
            "IDEMPOTENCY_KEY_CONFLICT",
            f"Idempotency key {key!r} was already used with a different {reason}",
            409,
            {"idempotency_key": key, "reason": reason, **details},
        )

    @staticmethod
    def duplicate_resource(message: str, **details: Any) -> AppError:
        return AppError(ErrorKind.CONFLICT, "DUPLICATE_RESOURCE", message, 409, details)

    @staticmethod
    def order_already_paid(order_id: str) -> AppError:
        return AppError(
            ErrorKind.INVALID_STATE,
            "ORDER_ALREADY_PAID",
            f"Order {order_id} is already paid",
            409,
            {"order_id": order_id},
        )

    @staticmethod
    def payment_not_allowed(reason: str, **details: Any) -> AppError:
        return AppError(ErrorKind.INVALID_STATE, "PAYMENT_NOT_ALLOWED", reason, 403, details)

    @staticmethod
    def refund_not_allowed(reason: str, **details: Any) -> AppError:
        return AppError(ErrorKind.INVALID_STATE, "REFUND_NOT_ALLOWED", reason, 403, details)

    @staticmethod
    def refund_amount_exceeded(requested: int, available: int) -> AppError:
        return AppError(
            ErrorKind.INVALID_STATE,
            "REFUND_AMOUNT_EXCEEDED",
            f"Refund of {requested} exceeds refundable balance {available}",
            400,
            {"requested": requested, "available": available},
        )

    @staticmethod
    def amount_mismatch(expected: int, actual: int) -> AppError:
        return AppError(
            ErrorKind.VALIDATION,
            "PAYMENT_AMOUNT_MISMATCH",
            f"Amount mismatch: expected {expected}, got {actual}",
            400,
            {"expected": expected, "actual": actual},
        )

    @staticmethod
    def invalid_request(message: str, **details: Any) -> AppError:
        return AppError(ErrorKind.VALIDATION, "INVALID_REQUEST", message, 400, details)

    @staticmethod
    def product_unavailable(product_id: str, reason: str) -> AppError:
        return AppError(
            ErrorKind.VALIDATION,
            "PRODUCT_UNAVAILABLE",
            f"Product {product_id} is not available: {reason}",
            400,
            {"product_id": product_id, "reason": reason},
        )

    @staticmethod
    def options_not_supported(product_id: str) -> AppError:
        return AppError(
            ErrorKind.VALIDATION,
            "OPTIONS_NOT_SUPPORTED",
            "Product options are disabled",
            400,
            {"product_id": product_id},
        )

    @staticmethod
    def inventory_not_found(product_id: str) -> AppError:
        return AppError(
            ErrorKind.VALIDATION,
            "INVENTORY_NOT_FOUND",
            f"No inventory record for product {product_id}",
            400,
            {"product_id": product_id},
        )

    @staticmethod
    def insufficient_inventory(product_id: str) -> AppError:
        return AppError(
            ErrorKind.VALIDATION,
            "INSUFFICIENT_INVENTORY",
            f"Insufficient inventory for product {product_id}",
            400,
            {"product_id": product_id},
        )

    @staticmethod
    def inventory_reservation_failed(message: str) -> AppError:
        return AppError(
            ErrorKind.VALIDATION,
            "INVENTORY_RESERVATION_FAILED",
            "Inventory reservation failed",
            400,
            {"error": message},
        )

    @staticmethod
    def provider_error(provider: str, message: str, payload: Any = None) -> AppError:
        return AppError(
            ErrorKind.PROVIDER_ERROR,
            "PAYMENT_PROVIDER_ERROR",
            message,
            502,
            {"provider": provider, "message": message, "details": payload},
        )

    @staticmethod
    def signature_verification_failed() -> AppError:
        return AppError(
            ErrorKind.SIGNATURE_VERIFICATION_FAILED,
            "WEBHOOK_SIGNATURE_VERIFICATION_FAILED",
            "Webhook signature verification failed",
            401,
        )

    @staticmethod
    def storage(operation: str, cause: Exception) -> AppError:
        return AppError(
            ErrorKind.INTERNAL,
            "STORAGE_ERROR",
            f"Failed to {operation}",
            500,
            {"operation": operation, "error": str(cause)},
        )


__all__ = (
    "ErrorKind",
    "AppError",
    "AppErrors",
)
