"""
Order types — requests, snapshots and receipts.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum

from ordergate.orders._signature import signature_from_items

# ═══════════════════════════════════════════════════════════════════════════════
# Status Enums
# ═══════════════════════════════════════════════════════════════════════════════


class OrderStatus(StrEnum):
    CREATED = "CREATED"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class OrderPaymentStatus(StrEnum):
    """Order-level mirror of the payment row's state."""

    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    PARTIAL_REFUNDED = "PARTIAL_REFUNDED"


class PaymentMethod(StrEnum):
    CARD = "CARD"
    TRANSFER = "TRANSFER"
    CASH = "CASH"


# ═══════════════════════════════════════════════════════════════════════════════
# Request
# ═══════════════════════════════════════════════════════════════════════════════


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclass(frozen=True, slots=True)
class OrderLineRequest:
    product_id: str
    qty: int
    options: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CustomerIdentity:
    """Identity fields used for duplicate detection. Blank means absent."""

    name: str | None = None
    phone: str | None = None
    address1: str | None = None


@dataclass(frozen=True, slots=True)
class CreateOrderRequest:
    branch_id: str
    items: tuple[OrderLineRequest, ...]
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_address1: str | None = None
    customer_address2: str | None = None
    customer_memo: str | None = None
    payment_method: PaymentMethod | None = None
    idempotency_key: str | None = None

    @property
    def identity(self) -> CustomerIdentity:
        return CustomerIdentity(
            name=_clean(self.customer_name),
            phone=_clean(self.customer_phone),
            address1=_clean(self.customer_address1),
        )

    @property
    def key(self) -> str | None:
        return _clean(self.idempotency_key)

    @property
    def signature(self) -> str:
        return signature_from_items(self.items)


# ═══════════════════════════════════════════════════════════════════════════════
# Catalogue
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ProductSnapshot:
    id: str
    branch_id: str
    name: str
    unit_price: int
    is_hidden: bool
    is_sold_out: bool


# ═══════════════════════════════════════════════════════════════════════════════
# Stored Order
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class OrderLine:
    product_id: str
    product_name: str
    qty: int
    unit_price: int
    options: tuple[str, ...] = ()
    id: str | None = None

    @property
    def line_total(self) -> int:
        return self.qty * self.unit_price


@dataclass(frozen=True, slots=True)
class OrderDraft:
    """Everything needed to insert an order row; priced from the catalogue."""

    id: str
    order_no: str
    branch_id: str
    identity: CustomerIdentity
    customer_address2: str | None
    customer_memo: str | None
    payment_method: PaymentMethod
    lines: tuple[OrderLine, ...]
    idempotency_key: str | None
    created_at: datetime

    @property
    def subtotal_amount(self) -> int:
        return sum(line.line_total for line in self.lines)

    @property
    def total_amount(self) -> int:
        # No shipping fee or discount at intake
        return self.subtotal_amount


@dataclass(frozen=True, slots=True)
class OrderSnapshot:
    id: str
    order_no: str
    branch_id: str
    status: OrderStatus
    payment_status: OrderPaymentStatus
    payment_method: str
    subtotal_amount: int
    total_amount: int
    customer_name: str | None
    customer_phone: str | None
    customer_address1: str | None
    idempotency_key: str | None
    created_at: datetime
    items: tuple[OrderLine, ...] = ()

    @property
    def signature(self) -> str:
        return signature_from_items(self.items)

    def with_items(self, items: tuple[OrderLine, ...]) -> OrderSnapshot:
        return replace(self, items=items)


# ═══════════════════════════════════════════════════════════════════════════════
# Receipt
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ReceiptLine:
    product_name: str
    qty: int
    unit_price: int
    options: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class OrderReceipt:
    """What a caller gets back from create/get; identical for replays."""

    id: str
    order_no: str
    status: OrderStatus
    payment_status: OrderPaymentStatus
    total_amount: int
    created_at: datetime
    items: tuple[ReceiptLine, ...]

    @classmethod
    def from_snapshot(cls, order: OrderSnapshot) -> OrderReceipt:
        return cls(
            id=order.id,
            order_no=order.order_no,
            status=order.status,
            payment_status=order.payment_status,
            total_amount=order.total_amount,
            created_at=order.created_at,
            items=tuple(
                ReceiptLine(
                    product_name=item.product_name,
                    qty=item.qty,
                    unit_price=item.unit_price,
                    options=item.options,
                )
                for item in order.items
            ),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
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
)
