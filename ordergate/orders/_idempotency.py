"""
Idempotency key resolver — client-supplied keys for order creation.

Keys are opaque strings scoped per branch. A replay with the same cart
returns the stored order; a replay with a different cart is a conflict.

An order found without items is still being written by a concurrent
request. settled() polls it until its items land, the row disappears
(the creation rolled back) or the wait runs out.
"""

from __future__ import annotations

import asyncio

from kungfu import Result, Ok, Error

from ordergate.errors import AppError, AppErrors
from ordergate.orders._repo import OrderRepository
from ordergate.orders._types import OrderSnapshot

DEFAULT_PENDING_WAIT = 2.0
DEFAULT_POLL_INTERVAL = 0.05


class IdempotencyKeyResolver:
    def __init__(
        self,
        repo: OrderRepository,
        *,
        pending_wait: float = DEFAULT_PENDING_WAIT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._repo = repo
        self._pending_wait = pending_wait
        self._poll_interval = poll_interval

    async def resolve(
        self,
        branch_id: str,
        key: str | None,
    ) -> Result[OrderSnapshot | None, AppError]:
        """Most recent order for (branch, key). No key means no lookup."""
        if not key:
            return Ok(None)
        return await self._repo.find_by_idempotency_key(branch_id, key)

    async def settled(self, order: OrderSnapshot) -> Result[OrderSnapshot | None, AppError]:
        """
        Re-read an in-flight order until it carries items.

        Ok(None) when the order is gone. When the wait runs out the last
        read is returned as is and only its amount can be compared.
        """
        if order.items:
            return Ok(order)

        current = order
        elapsed = 0.0
        while elapsed < self._pending_wait:
            await asyncio.sleep(self._poll_interval)
            elapsed += self._poll_interval

            match await self._repo.find(order.id):
                case Error(e):
                    return Error(e)
                case Ok(None):
                    return Ok(None)
                case Ok(fresh) if fresh.items:
                    return Ok(fresh)
                case Ok(fresh):
                    current = fresh

        return Ok(current)

    @staticmethod
    def reconcile(
        existing: OrderSnapshot,
        total_amount: int,
        signature: str,
    ) -> Result[OrderSnapshot, AppError]:
        """Accept a replay only if amount and cart are unchanged."""
        key = existing.idempotency_key or ""
        if existing.total_amount != total_amount:
            return Error(AppErrors.idempotency_conflict(
                key,
                "amount",
                order_id=existing.id,
                expected=existing.total_amount,
                actual=total_amount,
            ))
        if existing.items and existing.signature != signature:
            return Error(AppErrors.idempotency_conflict(
                key,
                "items",
                order_id=existing.id,
            ))
        return Ok(existing)


__all__ = ("IdempotencyKeyResolver", "DEFAULT_PENDING_WAIT", "DEFAULT_POLL_INTERVAL")
