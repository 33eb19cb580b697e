"""
Payments — preparation, confirmation, webhooks and refunds.

Every entry point that can observe a provider outcome moves the order's
single payments row with a status-guarded update, so confirm, webhook
and refund converge regardless of arrival order:

    PENDING/FAILED ─► SUCCESS ─► PARTIAL_REFUNDED ─► REFUNDED
          │              │
          └──────────────┴─► CANCELLED
"""

from __future__ import annotations

from ordergate.payments._types import (
    PaymentStatus,
    PROVIDER_TOSS,
    DEFAULT_CURRENCY,
    OPEN_STATUSES,
    CLOSED_STATUSES,
    REFUNDABLE_STATUSES,
    PaymentRecord,
    NewPayment,
    PreparePaymentRequest,
    ConfirmPaymentRequest,
    RefundRequest,
    PreparedPayment,
    ConfirmedPayment,
    RefundResult,
    PaymentStatusView,
    PaymentPage,
    WebhookData,
    WebhookEvent,
)
from ordergate.payments._provider import (
    ProviderPayment,
    ProviderFailure,
    PaymentProvider,
    TossPaymentsClient,
    decode_response,
    TIMEOUT_MESSAGE,
    MISSING_KEY_MESSAGE,
)
from ordergate.payments._repo import PaymentRepository
from ordergate.payments._settle import Settled, settle
from ordergate.payments._confirm import PaymentConfirmationEngine, order_name
from ordergate.payments._webhook import (
    WebhookOutcome,
    WebhookReconciler,
    verify_signature,
    header_value,
    DEFAULT_SIGNATURE_HEADER,
    DEFAULT_CANCEL_REASON,
)
from ordergate.payments._refund import RefundLedger, DEFAULT_REFUND_REASON
from ordergate.payments._query import PaymentQueries, MAX_PAGE_SIZE

__all__ = (
    # Types
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
    # Provider
    "ProviderPayment",
    "ProviderFailure",
    "PaymentProvider",
    "TossPaymentsClient",
    "decode_response",
    "TIMEOUT_MESSAGE",
    "MISSING_KEY_MESSAGE",
    # Storage
    "PaymentRepository",
    "Settled",
    "settle",
    # Engines
    "PaymentConfirmationEngine",
    "order_name",
    "WebhookOutcome",
    "WebhookReconciler",
    "verify_signature",
    "header_value",
    "DEFAULT_SIGNATURE_HEADER",
    "DEFAULT_CANCEL_REASON",
    "RefundLedger",
    "DEFAULT_REFUND_REASON",
    "PaymentQueries",
    "MAX_PAGE_SIZE",
)
