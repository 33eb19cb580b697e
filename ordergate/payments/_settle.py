"""
Settle — move the single payments row of an order to a new status.

Used by every entry point that can observe a provider outcome
(synchronous confirm, confirmation webhook, cancellation webhook).
Whichever gets there first writes; the others see applied=False and
the row as the winner left it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog
from kungfu import Result, Ok, Error

from ordergate.errors import AppError
from ordergate.payments._repo import PaymentRepository
from ordergate.payments._types import NewPayment, PaymentRecord, PaymentStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Settled:
    """record: the row after the attempt. applied: this call made the change."""

    record: PaymentRecord | None
    applied: bool


async def settle(
    payments: PaymentRepository,
    *,
    existing: PaymentRecord | None,
    new: NewPayment,
    allowed_from: Iterable[PaymentStatus],
    values: Mapping[str, Any],
) -> Result[Settled, AppError]:
    """
    Guarded update of the existing row, or insert of a new one.

    A unique violation on insert means another path created the row in
    the meantime: re-read it and apply the guarded update once.
    """
    allowed = tuple(allowed_from)

    if existing is None:
        match await payments.insert(new):
            case Ok(record):
                return Ok(Settled(record, applied=True))
            case Error(e) if e.code != "DUPLICATE_RESOURCE":
                return Error(e)
            case Error(duplicate):
                pass

        match await payments.find_by_order(new.order_id):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(duplicate)
            case Ok(current):
                existing = current

        logger.info(
            "payment.insert_race",
            order_id=new.order_id,
            payment_id=existing.id,
            status=str(existing.status),
        )
        if existing.status not in allowed:
            return Ok(Settled(existing, applied=False))

    match await payments.transition(existing.id, allowed_from=allowed, values=values):
        case Error(e):
            return Error(e)
        case Ok(None):
            match await payments.find(existing.id):
                case Ok(current):
                    return Ok(Settled(current, applied=False))
                case Error(e):
                    return Error(e)
        case Ok(record):
            return Ok(Settled(record, applied=True))


__all__ = ("Settled", "settle")
