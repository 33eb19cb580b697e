"""
Orders — public order intake with idempotency and duplicate detection.

    from ordergate.orders import CreateOrderRequest, OrderLineRequest

    result = await services.orders.create_order(CreateOrderRequest(
        branch_id="b1",
        items=(OrderLineRequest("p1", 2),),
        customer_name="Kim",
        customer_phone="010-0000-0000",
        idempotency_key="checkout-7f3a",
    ))

Repeating the call returns the same receipt; changing the cart under the
same key is an IDEMPOTENCY_KEY_CONFLICT.
"""

from __future__ import annotations

from ordergate.orders._types import (
    OrderStatus,
    OrderPaymentStatus,
    PaymentMethod,
    OrderLineRequest,
    CustomerIdentity,
    CreateOrderRequest,
    ProductSnapshot,
    OrderLine,
    OrderDraft,
    OrderSnapshot,
    ReceiptLine,
    OrderReceipt,
)
from ordergate.orders._signature import (
    canonical_lines,
    signature_of,
    signature_from_items,
    EMPTY_SIGNATURE,
)
from ordergate.orders._policy import (
    DedupStrategy,
    DedupWindows,
    DuplicatePolicy,
    resolve_policy,
)
from ordergate.orders._repo import OrderRepository, DedupLogEntry, is_uuid, generate_order_no
from ordergate.orders._idempotency import IdempotencyKeyResolver
from ordergate.orders._scanner import DuplicateMatch, RecentDuplicateScanner
from ordergate.orders._inventory import (
    InventoryReservationError,
    ReservationLine,
    InventoryReserver,
    InventoryGate,
    SQLInventoryReserver,
    translate_reservation_error,
)
from ordergate.orders._service import OrderService

__all__ = (
    # Types
    "OrderStatus",
    "OrderPaymentStatus",
    "PaymentMethod",
    "OrderLineRequest",
    "CustomerIdentity",
    "CreateOrderRequest",
    "ProductSnapshot",
    "OrderLine",
    "OrderDraft",
    "OrderSnapshot",
    "ReceiptLine",
    "OrderReceipt",
    # Signature
    "canonical_lines",
    "signature_of",
    "signature_from_items",
    "EMPTY_SIGNATURE",
    # Policy
    "DedupStrategy",
    "DedupWindows",
    "DuplicatePolicy",
    "resolve_policy",
    # Storage
    "OrderRepository",
    "DedupLogEntry",
    "is_uuid",
    "generate_order_no",
    # Dedup
    "IdempotencyKeyResolver",
    "DuplicateMatch",
    "RecentDuplicateScanner",
    # Inventory
    "InventoryReservationError",
    "ReservationLine",
    "InventoryReserver",
    "InventoryGate",
    "SQLInventoryReserver",
    "translate_reservation_error",
    # Service
    "OrderService",
)
