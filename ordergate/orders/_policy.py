"""
Duplicate policy — which identity fields, window and lookback to use
when looking for an unintentional resubmission without an idempotency key.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum

from ordergate.config import (
    DEFAULT_ANON_DUPLICATE_WINDOW_MS,
    DEFAULT_DUPLICATE_LOOKBACK_LIMIT,
    DEFAULT_DUPLICATE_WINDOW_MS,
    MAX_DUPLICATE_LOOKBACK_LIMIT,
    Settings,
)
from ordergate.orders._types import CustomerIdentity, PaymentMethod

WEAK_LOOKBACK_CAP = 3

# ═══════════════════════════════════════════════════════════════════════════════
# Strategy — ordered by specificity
# ═══════════════════════════════════════════════════════════════════════════════


class DedupStrategy(StrEnum):
    """
    Identity combination used to match a previous order.

    Strategies built from two identity fields are "strong" and get the
    long window; single-field and anonymous ones are "weak".
    """

    NAME_PHONE = "NAME_PHONE"
    PHONE_ADDRESS = "PHONE_ADDRESS"
    PHONE_ONLY = "PHONE_ONLY"
    NAME_ADDRESS = "NAME_ADDRESS"
    NAME_ONLY = "NAME_ONLY"
    ADDRESS_ONLY = "ADDRESS_ONLY"
    ANON = "ANON"

    @property
    def is_strong(self) -> bool:
        return self in _STRONG


_STRONG = frozenset({
    DedupStrategy.NAME_PHONE,
    DedupStrategy.PHONE_ADDRESS,
    DedupStrategy.NAME_ADDRESS,
})

# ═══════════════════════════════════════════════════════════════════════════════
# Windows — Fluent Configuration
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class DedupWindows:
    """
    Time windows and lookback sizes for strong/weak strategies.

    Fluent builder: each method returns a new DedupWindows.

    Example:
        windows = (
            DedupWindows()
            .with_strong(seconds=60, lookback=5)
            .with_weak(seconds=20)
        )
    """

    strong_window: timedelta = timedelta(milliseconds=DEFAULT_DUPLICATE_WINDOW_MS)
    weak_window: timedelta = timedelta(milliseconds=DEFAULT_ANON_DUPLICATE_WINDOW_MS)
    strong_lookback: int = DEFAULT_DUPLICATE_LOOKBACK_LIMIT

    @property
    def weak_lookback(self) -> int:
        return min(self.strong_lookback, WEAK_LOOKBACK_CAP)

    def with_strong(
        self,
        *,
        seconds: float | None = None,
        lookback: int | None = None,
    ) -> DedupWindows:
        window = timedelta(seconds=seconds) if seconds else self.strong_window
        limit = self.strong_lookback if lookback is None else lookback
        return DedupWindows(
            strong_window=window,
            weak_window=self.weak_window,
            strong_lookback=max(1, min(limit, MAX_DUPLICATE_LOOKBACK_LIMIT)),
        )

    def with_weak(self, *, seconds: float) -> DedupWindows:
        return DedupWindows(
            strong_window=self.strong_window,
            weak_window=timedelta(seconds=seconds),
            strong_lookback=self.strong_lookback,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> DedupWindows:
        return cls(
            strong_window=timedelta(milliseconds=settings.public_order_duplicate_window_ms),
            weak_window=timedelta(milliseconds=settings.public_order_anon_duplicate_window_ms),
            strong_lookback=settings.public_order_duplicate_lookback_limit,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Resolved Policy
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class DuplicatePolicy:
    """
    Resolved policy for one request.

    filters: column -> value equality filters for the lookback query.
    dedup_key: human-readable key, for audit logs only.
    payment_method: the method the request asked for (None if defaulted).
    """

    strategy: DedupStrategy
    window: timedelta
    lookback_limit: int
    filters: Mapping[str, str] = field(default_factory=dict)
    dedup_key: str = ""
    payment_method: str | None = None

    @property
    def window_ms(self) -> int:
        return int(self.window.total_seconds() * 1000)


def resolve_policy(
    identity: CustomerIdentity,
    payment_method: PaymentMethod | None,
    windows: DedupWindows,
) -> DuplicatePolicy:
    """
    Pick the most specific strategy the identity fields allow.

    NAME_PHONE > PHONE_ADDRESS > PHONE_ONLY > NAME_ADDRESS > NAME_ONLY
    > ADDRESS_ONLY > ANON. ANON falls back to matching on payment method
    (CARD when none was given).
    """
    name, phone, address = identity.name, identity.phone, identity.address1

    if name and phone:
        strategy = DedupStrategy.NAME_PHONE
        filters = {"customer_name": name, "customer_phone": phone}
        key = f"name_phone:{name}|{phone}"
    elif phone and address:
        strategy = DedupStrategy.PHONE_ADDRESS
        filters = {"customer_phone": phone, "customer_address1": address}
        key = f"phone_address:{phone}|{address}"
    elif phone:
        strategy = DedupStrategy.PHONE_ONLY
        filters = {"customer_phone": phone}
        key = f"phone:{phone}"
    elif name and address:
        strategy = DedupStrategy.NAME_ADDRESS
        filters = {"customer_name": name, "customer_address1": address}
        key = f"name_address:{name}|{address}"
    elif name:
        strategy = DedupStrategy.NAME_ONLY
        filters = {"customer_name": name}
        key = f"name:{name}"
    elif address:
        strategy = DedupStrategy.ADDRESS_ONLY
        filters = {"customer_address1": address}
        key = f"address:{address}"
    else:
        method = str(payment_method or PaymentMethod.CARD)
        strategy = DedupStrategy.ANON
        filters = {"payment_method": method}
        key = f"anon:{method}"

    if strategy.is_strong:
        window, limit = windows.strong_window, windows.strong_lookback
    else:
        window, limit = windows.weak_window, windows.weak_lookback

    return DuplicatePolicy(
        strategy=strategy,
        window=window,
        lookback_limit=limit,
        filters=filters,
        dedup_key=key,
        payment_method=str(payment_method) if payment_method else None,
    )


__all__ = (
    "DedupStrategy",
    "DedupWindows",
    "DuplicatePolicy",
    "resolve_policy",
    "WEAK_LOOKBACK_CAP",
)
