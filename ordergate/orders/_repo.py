"""
Order repository — SQLAlchemy access for orders, items and dedup logs.

Every method opens its own session and commits before returning, so each
call is one unit of work visible to concurrent requests. Storage
exceptions are converted to Error(AppError) here and nowhere else.
"""

from __future__ import annotations

import re
import secrets
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog
from kungfu import Result, Ok, Error
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ordergate._types import Clock, utcnow
from ordergate.db import (
    DedupLogTable,
    OrderItemOptionTable,
    OrderItemTable,
    OrderTable,
    ProductTable,
    is_unique_violation,
    new_id,
    violates,
)
from ordergate.errors import AppError, AppErrors
from ordergate.orders._types import (
    OrderDraft,
    OrderLine,
    OrderPaymentStatus,
    OrderSnapshot,
    OrderStatus,
    ProductSnapshot,
)

logger = structlog.get_logger(__name__)

ORDER_NO_ATTEMPTS = 5

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_uuid(value: str) -> bool:
    return bool(_UUID_RE.match(value))


def generate_order_no(now: datetime) -> str:
    """Human-readable order number, e.g. 20260210-3FA9C1."""
    return f"{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


# ═══════════════════════════════════════════════════════════════════════════════
# Dedup Log Entry
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class DedupLogEntry:
    branch_id: str
    strategy: str
    reason: str
    order_id: str | None = None
    matched_order_id: str | None = None
    idempotency_key: str | None = None
    signature: str | None = None
    total_amount: int | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_address1: str | None = None
    payment_method: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════════
# Row Mapping
# ═══════════════════════════════════════════════════════════════════════════════


def _price_of(row: ProductTable) -> int:
    if row.base_price is not None:
        return row.base_price
    if row.price is not None:
        return row.price
    return 0


def _order_row(draft: OrderDraft, order_no: str) -> OrderTable:
    return OrderTable(
        id=draft.id,
        order_no=order_no,
        branch_id=draft.branch_id,
        customer_name=draft.identity.name,
        customer_phone=draft.identity.phone,
        customer_address1=draft.identity.address1,
        customer_address2=draft.customer_address2,
        customer_memo=draft.customer_memo,
        payment_method=str(draft.payment_method),
        subtotal_amount=draft.subtotal_amount,
        shipping_fee=0,
        discount_amount=0,
        total_amount=draft.total_amount,
        status=OrderStatus.CREATED,
        payment_status=OrderPaymentStatus.PENDING,
        idempotency_key=draft.idempotency_key,
        created_at=draft.created_at,
    )


def _to_snapshot(row: OrderTable, items: Sequence[OrderLine] = ()) -> OrderSnapshot:
    return OrderSnapshot(
        id=row.id,
        order_no=row.order_no,
        branch_id=row.branch_id,
        status=OrderStatus(row.status),
        payment_status=OrderPaymentStatus(row.payment_status),
        payment_method=row.payment_method,
        subtotal_amount=row.subtotal_amount,
        total_amount=row.total_amount,
        customer_name=row.customer_name,
        customer_phone=row.customer_phone,
        customer_address1=row.customer_address1,
        idempotency_key=row.idempotency_key,
        created_at=row.created_at,
        items=tuple(items),
    )


async def _load_items(
    session: AsyncSession,
    order_ids: Iterable[str],
) -> dict[str, list[OrderLine]]:
    ids = list(order_ids)
    if not ids:
        return {}

    item_rows = (
        await session.execute(
            select(OrderItemTable)
            .where(OrderItemTable.order_id.in_(ids))
            .order_by(OrderItemTable.order_id, OrderItemTable.line_no)
        )
    ).scalars().all()

    option_names: dict[str, list[str]] = {}
    if item_rows:
        option_rows = (
            await session.execute(
                select(OrderItemOptionTable).where(
                    OrderItemOptionTable.order_item_id.in_([r.id for r in item_rows])
                )
            )
        ).scalars().all()
        for opt in option_rows:
            option_names.setdefault(opt.order_item_id, []).append(opt.option_name_snapshot)

    grouped: dict[str, list[OrderLine]] = {}
    for row in item_rows:
        grouped.setdefault(row.order_id, []).append(
            OrderLine(
                id=row.id,
                product_id=row.product_id,
                product_name=row.product_name_snapshot,
                qty=row.qty,
                unit_price=row.unit_price,
                options=tuple(option_names.get(row.id, ())),
            )
        )
    return grouped


# ═══════════════════════════════════════════════════════════════════════════════
# Repository
# ═══════════════════════════════════════════════════════════════════════════════


class OrderRepository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ) -> None:
        self._session = session_factory
        self._clock = clock

    # ─── Catalogue ────────────────────────────────────────────────────────────

    async def get_products(
        self, product_ids: Iterable[str]
    ) -> Result[dict[str, ProductSnapshot], AppError]:
        ids = sorted(set(product_ids))
        try:
            async with self._session() as session:
                rows = (
                    await session.execute(select(ProductTable).where(ProductTable.id.in_(ids)))
                ).scalars().all()
        except SQLAlchemyError as e:
            return Error(AppErrors.storage("load products", e))

        return Ok({
            row.id: ProductSnapshot(
                id=row.id,
                branch_id=row.branch_id,
                name=row.name,
                unit_price=_price_of(row),
                is_hidden=row.is_hidden,
                is_sold_out=row.is_sold_out,
            )
            for row in rows
        })

    # ─── Lookups ──────────────────────────────────────────────────────────────

    async def find(self, order_id: str) -> Result[OrderSnapshot | None, AppError]:
        """Order with items by primary key."""
        try:
            async with self._session() as session:
                row = await session.get(OrderTable, order_id)
                if row is None:
                    return Ok(None)
                items = await _load_items(session, [row.id])
        except SQLAlchemyError as e:
            return Error(AppErrors.storage("load order", e))

        return Ok(_to_snapshot(row, items.get(row.id, ())))

    async def resolve_order_id(
        self,
        order_ref: str,
        branch_id: str | None = None,
    ) -> Result[str | None, AppError]:
        """
        Accept a UUID or an order number.

        UUID lookup first, then order number; both optionally branch-scoped.
        """
        try:
            async with self._session() as session:
                if is_uuid(order_ref):
                    stmt = select(OrderTable.id).where(OrderTable.id == order_ref)
                    if branch_id is not None:
                        stmt = stmt.where(OrderTable.branch_id == branch_id)
                    found = (await session.execute(stmt)).scalar_one_or_none()
                    if found is not None:
                        return Ok(found)

                stmt = select(OrderTable.id).where(OrderTable.order_no == order_ref)
                if branch_id is not None:
                    stmt = stmt.where(OrderTable.branch_id == branch_id)
                return Ok((await session.execute(stmt)).scalar_one_or_none())
        except SQLAlchemyError as e:
            return Error(AppErrors.storage("resolve order", e))

    async def find_by_ref(
        self,
        order_ref: str,
        branch_id: str | None = None,
    ) -> Result[OrderSnapshot | None, AppError]:
        match await self.resolve_order_id(order_ref, branch_id):
            case Ok(None):
                return Ok(None)
            case Ok(order_id):
                return await self.find(order_id)
            case Error(e):
                return Error(e)

    async def find_by_idempotency_key(
        self,
        branch_id: str,
        key: str,
    ) -> Result[OrderSnapshot | None, AppError]:
        """Most recent order of the branch created with this key."""
        try:
            async with self._session() as session:
                row = (
                    await session.execute(
                        select(OrderTable)
                        .where(
                            OrderTable.branch_id == branch_id,
                            OrderTable.idempotency_key == key,
                        )
                        .order_by(OrderTable.created_at.desc())
                        .limit(1)
                    )
                ).scalar_one_or_none()
                if row is None:
                    return Ok(None)
                items = await _load_items(session, [row.id])
        except SQLAlchemyError as e:
            return Error(AppErrors.storage("load order by idempotency key", e))

        return Ok(_to_snapshot(row, items.get(row.id, ())))

    async def recent_candidates(
        self,
        branch_id: str,
        total_amount: int,
        filters: Mapping[str, str],
        since: datetime,
        limit: int,
    ) -> Result[list[OrderSnapshot], AppError]:
        """Fresh unpaid orders of the branch matching amount and identity filters."""
        stmt = select(OrderTable).where(
            OrderTable.branch_id == branch_id,
            OrderTable.total_amount == total_amount,
            OrderTable.status == OrderStatus.CREATED,
            OrderTable.payment_status == OrderPaymentStatus.PENDING,
            OrderTable.created_at >= since,
        )
        for column, value in filters.items():
            stmt = stmt.where(getattr(OrderTable, column) == value)
        stmt = stmt.order_by(OrderTable.created_at.desc()).limit(limit)

        try:
            async with self._session() as session:
                rows = (await session.execute(stmt)).scalars().all()
                items = await _load_items(session, [r.id for r in rows])
        except SQLAlchemyError as e:
            return Error(AppErrors.storage("scan recent orders", e))

        return Ok([_to_snapshot(row, items.get(row.id, ())) for row in rows])

    # ─── Writes ───────────────────────────────────────────────────────────────

    async def insert_order(self, draft: OrderDraft) -> Result[OrderSnapshot, AppError]:
        """
        Insert the order row alone.

        A duplicate (branch_id, idempotency_key) comes back as
        DUPLICATE_RESOURCE so the caller can treat it as a lost race.
        An order_no collision draws a fresh number and retries.
        """
        order_no = draft.order_no
        for _ in range(ORDER_NO_ATTEMPTS):
            row = _order_row(draft, order_no)
            try:
                async with self._session() as session:
                    session.add(row)
                    await session.commit()
            except SQLAlchemyError as e:
                if violates(e, "uq_orders_order_no", "orders.order_no"):
                    logger.warning("order.order_no_collision", order_no=order_no)
                    order_no = generate_order_no(draft.created_at)
                    continue
                if is_unique_violation(e):
                    return Error(AppErrors.duplicate_resource(
                        "Order already exists",
                        branch_id=draft.branch_id,
                        idempotency_key=draft.idempotency_key,
                    ))
                return Error(AppErrors.storage("insert order", e))
            return Ok(_to_snapshot(row))

        return Error(AppErrors.storage(
            "insert order", RuntimeError(f"no free order number after {ORDER_NO_ATTEMPTS} attempts")
        ))

    async def insert_items(
        self,
        order: OrderSnapshot,
        lines: Sequence[OrderLine],
    ) -> Result[OrderSnapshot, AppError]:
        """
        Insert all item rows in one commit, then options best-effort.

        Returns the order carrying its stored items.
        """
        stored: list[OrderLine] = []
        try:
            async with self._session() as session:
                for line_no, line in enumerate(lines):
                    item_id = new_id()
                    session.add(OrderItemTable(
                        id=item_id,
                        order_id=order.id,
                        product_id=line.product_id,
                        product_name_snapshot=line.product_name,
                        qty=line.qty,
                        unit_price=line.unit_price,
                        line_no=line_no,
                    ))
                    stored.append(OrderLine(
                        id=item_id,
                        product_id=line.product_id,
                        product_name=line.product_name,
                        qty=line.qty,
                        unit_price=line.unit_price,
                    ))
                await session.commit()
        except SQLAlchemyError as e:
            return Error(AppErrors.storage("insert order items", e))

        with_options: list[OrderLine] = []
        for line, item in zip(lines, stored):
            names = await self._insert_options(item.id or "", line.options)
            with_options.append(OrderLine(
                id=item.id,
                product_id=item.product_id,
                product_name=item.product_name,
                qty=item.qty,
                unit_price=item.unit_price,
                options=names,
            ))

        return Ok(order.with_items(tuple(with_options)))

    async def _insert_options(self, item_id: str, options: Sequence[str]) -> tuple[str, ...]:
        inserted: list[str] = []
        for option_name in options:
            try:
                async with self._session() as session:
                    session.add(OrderItemOptionTable(
                        order_item_id=item_id,
                        option_name_snapshot=option_name,
                        price_delta_snapshot=0,
                    ))
                    await session.commit()
                inserted.append(option_name)
            except SQLAlchemyError as e:
                logger.warning(
                    "order.option_insert_failed",
                    order_item_id=item_id,
                    option=option_name,
                    error=str(e),
                )
        return tuple(inserted)

    async def delete_order(self, order_id: str) -> None:
        """
        Compensating delete: options, then items, then the order.

        Raises on failure; the saga runner records and logs it.
        """
        async with self._session() as session:
            item_ids = select(OrderItemTable.id).where(OrderItemTable.order_id == order_id)
            await session.execute(
                delete(OrderItemOptionTable).where(OrderItemOptionTable.order_item_id.in_(item_ids))
            )
            await session.execute(delete(OrderItemTable).where(OrderItemTable.order_id == order_id))
            await session.execute(delete(OrderTable).where(OrderTable.id == order_id))
            await session.commit()
        logger.info("order.rolled_back", order_id=order_id)

    async def set_payment_status(
        self,
        order_id: str,
        status: OrderPaymentStatus,
        *,
        allowed_from: Iterable[OrderPaymentStatus],
    ) -> Result[bool, AppError]:
        """
        Guarded transition of orders.payment_status.

        Ok(False) when the order is not in one of allowed_from
        (already transitioned by a concurrent path).
        """
        try:
            async with self._session() as session:
                cursor = await session.execute(
                    update(OrderTable)
                    .where(
                        OrderTable.id == order_id,
                        OrderTable.payment_status.in_([str(s) for s in allowed_from]),
                    )
                    .values(payment_status=str(status), updated_at=self._clock())
                )
                await session.commit()
        except SQLAlchemyError as e:
            return Error(AppErrors.storage("update order payment status", e))

        return Ok(cursor.rowcount > 0)

    # ─── Audit ────────────────────────────────────────────────────────────────

    async def log_dedup(self, entry: DedupLogEntry) -> None:
        """Append an order_dedup_logs row. Failures are logged, never raised."""
        try:
            async with self._session() as session:
                session.add(DedupLogTable(
                    branch_id=entry.branch_id,
                    order_id=entry.order_id,
                    matched_order_id=entry.matched_order_id,
                    idempotency_key=entry.idempotency_key,
                    signature=entry.signature,
                    total_amount=entry.total_amount,
                    customer_name=entry.customer_name,
                    customer_phone=entry.customer_phone,
                    customer_address1=entry.customer_address1,
                    payment_method=entry.payment_method,
                    strategy=entry.strategy,
                    reason=entry.reason,
                    details=dict(entry.metadata),
                    created_at=self._clock(),
                ))
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(
                "order.dedup_log_failed",
                branch_id=entry.branch_id,
                strategy=entry.strategy,
                error=str(e),
            )


__all__ = (
    "OrderRepository",
    "DedupLogEntry",
    "is_uuid",
    "generate_order_no",
)
