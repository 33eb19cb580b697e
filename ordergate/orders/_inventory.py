"""
Inventory reservation gate.

The reserver is an external collaborator (an RPC in production, a SQL
implementation for single-database deployments) that reserves all
lines atomically or raises. The gate turns its failures into AppError.

Reserver error strings:
    INVENTORY_NOT_FOUND:<product_id>
    INSUFFICIENT_INVENTORY:<product_id>
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import structlog
from kungfu import LazyCoroResult
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ordergate import lift as L
from ordergate._types import Clock, utcnow
from ordergate.db import InventoryLogTable, ProductInventoryTable
from ordergate.errors import AppError, AppErrors

logger = structlog.get_logger(__name__)

_CODED_ERROR = re.compile(r"(INVENTORY_NOT_FOUND|INSUFFICIENT_INVENTORY):(\S+)")


class InventoryReservationError(Exception):
    """Raised by a reserver; message carries the coded reason."""


@dataclass(frozen=True, slots=True)
class ReservationLine:
    product_id: str
    qty: int


class InventoryReserver(Protocol):
    async def reserve(
        self,
        branch_id: str,
        order_id: str,
        order_no: str,
        lines: Sequence[ReservationLine],
    ) -> None: ...


def translate_reservation_error(exc: Exception) -> AppError:
    found = _CODED_ERROR.search(str(exc))
    if found is None:
        return AppErrors.inventory_reservation_failed(str(exc))
    code, product_id = found.groups()
    if code == "INVENTORY_NOT_FOUND":
        return AppErrors.inventory_not_found(product_id)
    return AppErrors.insufficient_inventory(product_id)


# ═══════════════════════════════════════════════════════════════════════════════
# Gate
# ═══════════════════════════════════════════════════════════════════════════════


class InventoryGate:
    def __init__(self, reserver: InventoryReserver) -> None:
        self._reserver = reserver

    def reserve(
        self,
        branch_id: str,
        order_id: str,
        order_no: str,
        lines: Sequence[ReservationLine],
    ) -> LazyCoroResult[None, AppError]:
        """Lazy reservation; any reserver exception becomes Error(AppError)."""

        def on_error(exc: Exception) -> AppError:
            logger.warning(
                "inventory.reservation_failed",
                branch_id=branch_id,
                order_id=order_id,
                error=str(exc),
            )
            return translate_reservation_error(exc)

        return L.catching_async(
            lambda: self._reserver.reserve(branch_id, order_id, order_no, lines),
            on_error=on_error,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# SQL Reserver
# ═══════════════════════════════════════════════════════════════════════════════


class SQLInventoryReserver:
    """
    Reserves against product_inventory in one transaction.

    Each line is a conditional UPDATE (qty_available >= qty), so two
    concurrent reservations cannot oversell. Nothing is committed unless
    every line succeeds.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ) -> None:
        self._session = session_factory
        self._clock = clock

    async def reserve(
        self,
        branch_id: str,
        order_id: str,
        order_no: str,
        lines: Sequence[ReservationLine],
    ) -> None:
        movements: list[tuple[ReservationLine, int]] = []

        async with self._session() as session:
            for line in lines:
                before = (
                    await session.execute(
                        select(ProductInventoryTable.qty_available).where(
                            ProductInventoryTable.branch_id == branch_id,
                            ProductInventoryTable.product_id == line.product_id,
                        )
                    )
                ).scalar_one_or_none()
                if before is None:
                    raise InventoryReservationError(f"INVENTORY_NOT_FOUND:{line.product_id}")

                cursor = await session.execute(
                    update(ProductInventoryTable)
                    .where(
                        ProductInventoryTable.branch_id == branch_id,
                        ProductInventoryTable.product_id == line.product_id,
                        ProductInventoryTable.qty_available >= line.qty,
                    )
                    .values(
                        qty_available=ProductInventoryTable.qty_available - line.qty,
                        qty_reserved=ProductInventoryTable.qty_reserved + line.qty,
                    )
                )
                if cursor.rowcount == 0:
                    raise InventoryReservationError(f"INSUFFICIENT_INVENTORY:{line.product_id}")
                movements.append((line, before))

            await session.commit()

        await self._log(branch_id, order_id, order_no, movements)

    async def _log(
        self,
        branch_id: str,
        order_id: str,
        order_no: str,
        movements: Sequence[tuple[ReservationLine, int]],
    ) -> None:
        try:
            async with self._session() as session:
                now = self._clock()
                for line, before in movements:
                    session.add(InventoryLogTable(
                        branch_id=branch_id,
                        product_id=line.product_id,
                        transaction_type="RESERVE",
                        qty_change=-line.qty,
                        qty_before=before,
                        qty_after=before - line.qty,
                        reference_id=order_id,
                        reference_type="ORDER",
                        notes=f"Reserved for order {order_no}",
                        created_at=now,
                    ))
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning("inventory.log_failed", order_id=order_id, error=str(e))


__all__ = (
    "InventoryReservationError",
    "ReservationLine",
    "InventoryReserver",
    "InventoryGate",
    "SQLInventoryReserver",
    "translate_reservation_error",
)
