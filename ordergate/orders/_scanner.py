"""
Recent-duplicate scanner — catches resubmissions that carry no key.

A double tap or a client retry without an idempotency key shows up as a
fresh, unpaid order of the same branch, same amount, same customer
identity and same cart, created moments ago. Anything older than the
policy window, or already paid, is treated as a genuine new order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog
from kungfu import Result, Ok, Error

from ordergate._types import Clock, utcnow
from ordergate.errors import AppError
from ordergate.orders._policy import (
    DedupStrategy,
    DedupWindows,
    DuplicatePolicy,
    resolve_policy,
)
from ordergate.orders._repo import OrderRepository
from ordergate.orders._types import CreateOrderRequest, OrderSnapshot

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class DuplicateMatch:
    order: OrderSnapshot
    strategy: DedupStrategy
    metadata: dict[str, Any] = field(default_factory=dict)


def policy_metadata(policy: DuplicatePolicy) -> dict[str, Any]:
    return {
        "window_ms": policy.window_ms,
        "lookback_limit": policy.lookback_limit,
        "dedup_key": policy.dedup_key,
        "payment_method": policy.payment_method,
    }


class RecentDuplicateScanner:
    def __init__(
        self,
        repo: OrderRepository,
        windows: DedupWindows | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repo
        self._windows = windows or DedupWindows()
        self._clock = clock

    def policy_for(self, request: CreateOrderRequest) -> DuplicatePolicy:
        return resolve_policy(request.identity, request.payment_method, self._windows)

    async def scan(
        self,
        branch_id: str,
        request: CreateOrderRequest,
        total_amount: int,
        signature: str,
    ) -> Result[DuplicateMatch | None, AppError]:
        """First recent candidate whose cart signature equals the request's."""
        policy = self.policy_for(request)
        since = self._clock() - policy.window

        candidates = await self._repo.recent_candidates(
            branch_id,
            total_amount,
            policy.filters,
            since,
            policy.lookback_limit,
        )
        match candidates:
            case Error(e):
                return Error(e)
            case Ok(orders):
                pass

        for order in orders:
            if order.signature == signature:
                logger.info(
                    "order.dedup_candidate_matched",
                    branch_id=branch_id,
                    order_id=order.id,
                    strategy=str(policy.strategy),
                )
                return Ok(DuplicateMatch(
                    order=order,
                    strategy=policy.strategy,
                    metadata=policy_metadata(policy),
                ))

        return Ok(None)


__all__ = ("DuplicateMatch", "RecentDuplicateScanner", "policy_metadata")
