"""
Order service — public order intake with deduplication.

    validate + price ─► idempotency key ─► recent duplicate ─► saga
                              │                   │              │
                         replay/conflict     same order     insert order
                                                            insert items
                                                            reserve stock

Only a clean miss on both dedup checks writes anything. The saga
compensates the order row if items or inventory fail, and a unique
violation on (branch_id, idempotency_key) resolves to the winning order.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog
from kungfu import Result, Ok, Error

from ordergate import lift as L
from ordergate import saga as S
from ordergate._types import Clock, utcnow
from ordergate.db import new_id
from ordergate.errors import AppError, AppErrors
from ordergate.orders._idempotency import IdempotencyKeyResolver
from ordergate.orders._inventory import InventoryGate, ReservationLine
from ordergate.orders._repo import DedupLogEntry, OrderRepository, generate_order_no
from ordergate.orders._scanner import DuplicateMatch, RecentDuplicateScanner
from ordergate.orders._types import (
    CreateOrderRequest,
    OrderDraft,
    OrderLine,
    OrderReceipt,
    OrderSnapshot,
    PaymentMethod,
)

logger = structlog.get_logger(__name__)

IDEMPOTENCY_STRATEGY = "IDEMPOTENCY_KEY"


class OrderService:
    def __init__(
        self,
        repo: OrderRepository,
        resolver: IdempotencyKeyResolver,
        scanner: RecentDuplicateScanner,
        inventory: InventoryGate,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repo
        self._resolver = resolver
        self._scanner = scanner
        self._inventory = inventory
        self._clock = clock

    # ─── Queries ──────────────────────────────────────────────────────────────

    async def get_order(
        self,
        order_ref: str,
        branch_id: str | None = None,
    ) -> Result[OrderReceipt, AppError]:
        match await self._repo.find_by_ref(order_ref, branch_id):
            case Ok(None):
                return Error(AppErrors.order_not_found(order_ref))
            case Ok(order):
                return Ok(OrderReceipt.from_snapshot(order))
            case Error(e):
                return Error(e)

    # ─── Creation ─────────────────────────────────────────────────────────────

    async def create_order(self, request: CreateOrderRequest) -> Result[OrderReceipt, AppError]:
        match await self._draft(request):
            case Error(e):
                return Error(e)
            case Ok(draft):
                pass

        signature = request.signature
        key = request.key

        match await self._resolver.resolve(request.branch_id, key):
            case Error(e):
                return Error(e)
            case Ok(None):
                pass
            case Ok(existing):
                match await self._resolver.settled(existing):
                    case Error(e):
                        return Error(e)
                    case Ok(None):
                        logger.info("order.replay_target_rolled_back", order_id=existing.id)
                    case Ok(order):
                        return await self._replay(order, draft, signature)

        match await self._scanner.scan(request.branch_id, request, draft.total_amount, signature):
            case Error(e):
                return Error(e)
            case Ok(None):
                pass
            case Ok(DuplicateMatch() as found):
                return await self._recent_duplicate(found, draft, signature)

        match await S.run(self._creation(draft)):
            case Ok(done):
                order = done.value
                logger.info(
                    "order.created",
                    order_id=order.id,
                    order_no=order.order_no,
                    branch_id=order.branch_id,
                    total_amount=order.total_amount,
                )
                return Ok(OrderReceipt.from_snapshot(order))

            case Error(failed):
                if failed.error.code == "DUPLICATE_RESOURCE" and key is not None:
                    return await self._lost_race(draft, signature, failed.error)
                logger.warning(
                    "order.create_failed",
                    branch_id=draft.branch_id,
                    step=failed.step_name,
                    code=failed.error.code,
                    rollback_complete=failed.rollback_complete,
                )
                return Error(failed.error)

    # ─── Validation & Pricing ─────────────────────────────────────────────────

    async def _draft(self, request: CreateOrderRequest) -> Result[OrderDraft, AppError]:
        """Check the cart against the live catalogue and price it."""
        if not request.items:
            return Error(AppErrors.invalid_request("Order must contain at least one item"))

        for item in request.items:
            if item.qty < 1:
                return Error(AppErrors.invalid_request(
                    "Quantity must be at least 1",
                    product_id=item.product_id,
                    qty=item.qty,
                ))
            if item.options:
                return Error(AppErrors.options_not_supported(item.product_id))

        match await self._repo.get_products(item.product_id for item in request.items):
            case Error(e):
                return Error(e)
            case Ok(products):
                pass

        lines: list[OrderLine] = []
        for item in request.items:
            product = products.get(item.product_id)
            if product is None:
                return Error(AppErrors.product_unavailable(item.product_id, "not found"))
            if product.branch_id != request.branch_id:
                return Error(AppErrors.product_unavailable(item.product_id, "belongs to another branch"))
            if product.is_hidden:
                return Error(AppErrors.product_unavailable(item.product_id, "hidden"))
            if product.is_sold_out:
                return Error(AppErrors.product_unavailable(item.product_id, "sold out"))
            lines.append(OrderLine(
                product_id=product.id,
                product_name=product.name,
                qty=item.qty,
                unit_price=product.unit_price,
            ))

        now = self._clock()
        return Ok(OrderDraft(
            id=new_id(),
            order_no=generate_order_no(now),
            branch_id=request.branch_id,
            identity=request.identity,
            customer_address2=request.customer_address2,
            customer_memo=request.customer_memo,
            payment_method=request.payment_method or PaymentMethod.CARD,
            lines=tuple(lines),
            idempotency_key=request.key,
            created_at=now,
        ))

    # ─── Saga ─────────────────────────────────────────────────────────────────

    def _creation(self, draft: OrderDraft) -> S.Saga[OrderSnapshot, AppError]:
        reservation = [ReservationLine(line.product_id, line.qty) for line in draft.lines]

        return (
            S.step(
                L.from_awaitable(lambda: self._repo.insert_order(draft)),
                compensate=lambda order: self._repo.delete_order(order.id),
                name="insert_order",
            )
            .then(lambda order: S.step(
                L.from_awaitable(lambda: self._repo.insert_items(order, draft.lines)),
                name="insert_items",
            ))
            .then(lambda order: S.step(
                self._inventory
                .reserve(draft.branch_id, order.id, order.order_no, reservation)
                .map(lambda _: order),
                name="reserve_inventory",
            ))
        )

    # ─── Dedup Outcomes ───────────────────────────────────────────────────────

    async def _replay(
        self,
        existing: OrderSnapshot,
        draft: OrderDraft,
        signature: str,
    ) -> Result[OrderReceipt, AppError]:
        match self._resolver.reconcile(existing, draft.total_amount, signature):
            case Ok(order):
                await self._audit(draft, signature, IDEMPOTENCY_STRATEGY, "IDEMPOTENCY_REPLAY", order)
                logger.info("order.dedup_hit", order_id=order.id, strategy=IDEMPOTENCY_STRATEGY)
                return Ok(OrderReceipt.from_snapshot(order))
            case Error(e):
                await self._audit(
                    draft, signature, IDEMPOTENCY_STRATEGY, "IDEMPOTENCY_CONFLICT", existing,
                    {"conflict": e.details.get("reason")},
                )
                logger.warning(
                    "order.idempotency_conflict",
                    order_id=existing.id,
                    reason=e.details.get("reason"),
                )
                return Error(e)

    async def _recent_duplicate(
        self,
        found: DuplicateMatch,
        draft: OrderDraft,
        signature: str,
    ) -> Result[OrderReceipt, AppError]:
        await self._audit(
            draft, signature, str(found.strategy), "RECENT_DUPLICATE", found.order, found.metadata,
        )
        logger.info("order.dedup_hit", order_id=found.order.id, strategy=str(found.strategy))
        return Ok(OrderReceipt.from_snapshot(found.order))

    async def _lost_race(
        self,
        draft: OrderDraft,
        signature: str,
        original: AppError,
    ) -> Result[OrderReceipt, AppError]:
        """Another request inserted the same (branch, key) first; converge on it."""
        key = draft.idempotency_key or ""

        match await self._resolver.resolve(draft.branch_id, key):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(original)
            case Ok(found):
                pass

        match await self._resolver.settled(found):
            case Error(e):
                return Error(e)
            case Ok(None):
                logger.warning("order.race_winner_rolled_back", order_id=found.id)
                return Error(original)
            case Ok(winner):
                pass

        match self._resolver.reconcile(winner, draft.total_amount, signature):
            case Error(e):
                await self._audit(
                    draft, signature, IDEMPOTENCY_STRATEGY, "CONCURRENT_CONFLICT", winner,
                    {"conflict": e.details.get("reason")},
                )
                return Error(e)
            case Ok(order):
                await self._audit(draft, signature, IDEMPOTENCY_STRATEGY, "CONCURRENT_INSERT", order)
                logger.info("order.dedup_race_resolved", order_id=order.id)
                return Ok(OrderReceipt.from_snapshot(order))

    async def _audit(
        self,
        draft: OrderDraft,
        signature: str,
        strategy: str,
        reason: str,
        matched: OrderSnapshot,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        await self._repo.log_dedup(DedupLogEntry(
            branch_id=draft.branch_id,
            strategy=strategy,
            reason=reason,
            order_id=matched.id,
            matched_order_id=matched.id,
            idempotency_key=draft.idempotency_key,
            signature=signature,
            total_amount=draft.total_amount,
            customer_name=draft.identity.name,
            customer_phone=draft.identity.phone,
            customer_address1=draft.identity.address1,
            payment_method=str(draft.payment_method),
            metadata=dict(metadata or {}),
        ))


__all__ = ("OrderService", "IDEMPOTENCY_STRATEGY")
