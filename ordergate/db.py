"""
Database layer — SQLAlchemy models for orders, payments and audit logs.

Note: uniqueness constraints are the only cross-request mutual exclusion.
    orders (branch_id, idempotency_key)  — one order per client submission
    payments.order_id                    — one payment row per order
    payments.idempotency_key             — one confirm per client key
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def new_id() -> str:
    return str(uuid.uuid4())


# ═══════════════════════════════════════════════════════════════════════════════
# Base
# ═══════════════════════════════════════════════════════════════════════════════

class Base(DeclarativeBase):
    pass


# ═══════════════════════════════════════════════════════════════════════════════
# Catalogue & Inventory
# ═══════════════════════════════════════════════════════════════════════════════

class ProductTable(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    branch_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    base_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_sold_out: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class ProductInventoryTable(Base):
    __tablename__ = "product_inventory"
    __table_args__ = (
        UniqueConstraint("branch_id", "product_id", name="uq_inventory_branch_product"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    branch_id: Mapped[str] = mapped_column(String(36), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    qty_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    qty_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class InventoryLogTable(Base):
    __tablename__ = "inventory_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    branch_id: Mapped[str] = mapped_column(String(36), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    qty_change: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_before: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════

class OrderTable(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint(
            "branch_id", "idempotency_key", name="uq_orders_branch_idempotency_key"
        ),
        UniqueConstraint("order_no", name="uq_orders_order_no"),
        Index("ix_orders_branch_created", "branch_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_no: Mapped[str] = mapped_column(String(32), nullable=False)
    branch_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # Customer identity (all optional)
    customer_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    customer_address1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_address2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_memo: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Amounts
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    subtotal_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    shipping_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    # Status
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class OrderItemTable(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    product_name_snapshot: Mapped[str] = mapped_column(String(200), nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class OrderItemOptionTable(Base):
    __tablename__ = "order_item_options"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("order_items.id"), nullable=False, index=True
    )
    product_option_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    option_name_snapshot: Mapped[str] = mapped_column(String(200), nullable=False)
    price_delta_snapshot: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class DedupLogTable(Base):
    """Append-only record of why a submission was (not) treated as duplicate."""

    __tablename__ = "order_dedup_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    branch_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    order_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    matched_order_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    signature: Mapped[str | None] = mapped_column(String(64), nullable=True)
    total_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    customer_address1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    strategy: Mapped[str] = mapped_column(String(30), nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


# ═══════════════════════════════════════════════════════════════════════════════
# Payments
# ═══════════════════════════════════════════════════════════════════════════════

class PaymentTable(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id"), nullable=False, unique=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="KRW")
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_payment_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    provider_payment_key: Mapped[str | None] = mapped_column(
        String(200), nullable=True, index=True
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        String(255), nullable=True, unique=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    refund_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Raw provider payload ("metadata" is reserved on declarative classes)
    provider_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class WebhookLogTable(Base):
    """Append-only webhook audit row; only processed/error columns change."""

    __tablename__ = "payment_webhook_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    payment_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    event_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    request_body: Mapped[Any] = mapped_column(JSON, nullable=True)
    request_headers: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════

def is_unique_violation(exc: BaseException) -> bool:
    """True for duplicate-key inserts (SQLite "UNIQUE constraint", Postgres 23505)."""
    if not isinstance(exc, IntegrityError):
        return False
    orig = exc.orig
    if getattr(orig, "sqlstate", None) == "23505" or getattr(orig, "pgcode", None) == "23505":
        return True
    text = str(orig).lower()
    return "unique" in text or "duplicate" in text


def violates(exc: BaseException, constraint: str, column: str) -> bool:
    """
    True when a unique violation names this constraint or column.

    Postgres reports the constraint name, SQLite the "table.column" list.
    """
    if not is_unique_violation(exc):
        return False
    text = str(getattr(exc, "orig", exc))
    return constraint in text or column in text


# ═══════════════════════════════════════════════════════════════════════════════
# Database Setup
# ═══════════════════════════════════════════════════════════════════════════════

async def create_database(
    url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Create tables and return (session_factory, engine)."""
    engine = create_async_engine(url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(engine, expire_on_commit=False), engine


__all__ = (
    "Base",
    "ProductTable",
    "ProductInventoryTable",
    "InventoryLogTable",
    "OrderTable",
    "OrderItemTable",
    "OrderItemOptionTable",
    "DedupLogTable",
    "PaymentTable",
    "WebhookLogTable",
    "new_id",
    "is_unique_violation",
    "violates",
    "create_database",
)
