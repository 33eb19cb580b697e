"""
Payment types — records, requests, results and the webhook envelope.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ═══════════════════════════════════════════════════════════════════════════════
# Status
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentStatus(StrEnum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    PARTIAL_REFUNDED = "PARTIAL_REFUNDED"


PROVIDER_TOSS = "TOSS"
DEFAULT_CURRENCY = "KRW"

OPEN_STATUSES = (PaymentStatus.PENDING, PaymentStatus.FAILED)
"""States a confirmation or webhook may still move to SUCCESS."""

CLOSED_STATUSES = (
    PaymentStatus.CANCELLED,
    PaymentStatus.REFUNDED,
    PaymentStatus.PARTIAL_REFUNDED,
)

REFUNDABLE_STATUSES = (PaymentStatus.SUCCESS, PaymentStatus.PARTIAL_REFUNDED)

# ═══════════════════════════════════════════════════════════════════════════════
# Stored Payment
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PaymentRecord:
    id: str
    order_id: str
    amount: int
    currency: str
    provider: str
    payment_method: str
    status: PaymentStatus
    refund_amount: int = 0
    provider_payment_id: str | None = None
    provider_payment_key: str | None = None
    idempotency_key: str | None = None
    failure_reason: str | None = None
    cancel_reason: str | None = None
    refund_reason: str | None = None
    paid_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None
    refunded_at: datetime | None = None
    metadata: Mapping[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    order_no: str | None = None

    @property
    def refundable(self) -> int:
        return self.amount - self.refund_amount


@dataclass(frozen=True, slots=True)
class NewPayment:
    """Insert payload for a payments row."""

    order_id: str
    amount: int
    status: PaymentStatus
    payment_method: str
    provider_payment_id: str | None = None
    provider_payment_key: str | None = None
    idempotency_key: str | None = None
    failure_reason: str | None = None
    cancel_reason: str | None = None
    paid_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None
    metadata: Mapping[str, Any] | None = None
    provider: str = PROVIDER_TOSS
    currency: str = DEFAULT_CURRENCY


# ═══════════════════════════════════════════════════════════════════════════════
# Requests
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PreparePaymentRequest:
    order_ref: str
    amount: int


@dataclass(frozen=True, slots=True)
class ConfirmPaymentRequest:
    order_ref: str
    payment_key: str
    amount: int
    idempotency_key: str | None = None
    payment_method: str = "CARD"


@dataclass(frozen=True, slots=True)
class RefundRequest:
    """amount None means the whole remaining balance."""

    amount: int | None = None
    reason: str | None = None
    branch_id: str | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PreparedPayment:
    order_id: str
    order_no: str
    amount: int
    order_name: str
    customer_name: str
    customer_phone: str


@dataclass(frozen=True, slots=True)
class ConfirmedPayment:
    payment_id: str
    order_id: str
    status: PaymentStatus
    amount: int
    paid_at: datetime | None

    @classmethod
    def from_record(cls, record: PaymentRecord) -> ConfirmedPayment:
        return cls(
            payment_id=record.id,
            order_id=record.order_id,
            status=record.status,
            amount=record.amount,
            paid_at=record.paid_at,
        )


@dataclass(frozen=True, slots=True)
class RefundResult:
    payment_id: str
    status: PaymentStatus
    refunded: int
    refund_amount: int
    refunded_at: datetime


@dataclass(frozen=True, slots=True)
class PaymentStatusView:
    id: str
    order_id: str
    status: PaymentStatus
    amount: int
    paid_at: datetime | None = None
    failure_reason: str | None = None


@dataclass(frozen=True, slots=True)
class PaymentPage:
    items: tuple[PaymentRecord, ...]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


# ═══════════════════════════════════════════════════════════════════════════════
# Webhook Envelope
# ═══════════════════════════════════════════════════════════════════════════════


class WebhookData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    order_id: str = Field(alias="orderId")
    payment_key: str = Field(alias="paymentKey")
    status: str | None = None
    amount: int | None = None
    cancellation_reason: str | None = Field(default=None, alias="cancellationReason")


class WebhookEvent(BaseModel):
    """Provider webhook body: {eventType, createdAt, data: {...}}."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    event_type: str = Field(alias="eventType")
    created_at: str | None = Field(default=None, alias="createdAt")
    data: WebhookData


__all__ = (
    "PaymentStatus",
    "PROVIDER_TOSS",
    "DEFAULT_CURRENCY",
    "OPEN_STATUSES",
    "CLOSED_STATUSES",
    "REFUNDABLE_STATUSES",
    "PaymentRecord",
    "NewPayment",
    "PreparePaymentRequest",
    "ConfirmPaymentRequest",
    "RefundRequest",
    "PreparedPayment",
    "ConfirmedPayment",
    "RefundResult",
    "PaymentStatusView",
    "PaymentPage",
    "WebhookData",
    "WebhookEvent",
)
