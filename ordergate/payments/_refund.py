"""
Refund ledger — full and partial refunds against a successful payment.

The update is optimistic: it only applies if refund_amount is still what
was read, so two concurrent refunds cannot both pass the balance check.
"""

from __future__ import annotations

import structlog
from kungfu import Result, Ok, Error

from ordergate._types import Clock, utcnow
from ordergate.errors import AppError, AppErrors
from ordergate.orders import OrderPaymentStatus, OrderRepository
from ordergate.payments._provider import PaymentProvider
from ordergate.payments._repo import PaymentRepository
from ordergate.payments._types import (
    REFUNDABLE_STATUSES,
    PaymentStatus,
    RefundRequest,
    RefundResult,
)

logger = structlog.get_logger(__name__)

DEFAULT_REFUND_REASON = "Refund requested"


class RefundLedger:
    def __init__(
        self,
        orders: OrderRepository,
        payments: PaymentRepository,
        provider: PaymentProvider,
        clock: Clock = utcnow,
    ) -> None:
        self._orders = orders
        self._payments = payments
        self._provider = provider
        self._clock = clock

    async def refund(
        self,
        payment_id: str,
        request: RefundRequest,
    ) -> Result[RefundResult, AppError]:
        match await self._payments.find(payment_id, request.branch_id):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(AppErrors.payment_not_found(payment_id))
            case Ok(payment):
                pass

        if payment.status not in REFUNDABLE_STATUSES:
            return Error(AppErrors.refund_not_allowed(
                f"Payment status is {payment.status}",
                payment_id=payment.id,
                status=str(payment.status),
            ))

        requested = payment.refundable if request.amount is None else request.amount
        if requested <= 0:
            return Error(AppErrors.invalid_request("Refund amount must be positive", amount=requested))
        if payment.refund_amount + requested > payment.amount:
            return Error(AppErrors.refund_amount_exceeded(requested, payment.refundable))

        if not self._provider.mock_mode and not payment.provider_payment_key:
            return Error(AppErrors.provider_error(
                self._provider.name,
                "Missing provider payment key for refund",
            ))

        reason = request.reason or DEFAULT_REFUND_REASON
        match await self._provider.cancel(payment.provider_payment_key or "", requested, reason):
            case Error(failure):
                logger.error("refund.provider_failed", payment_id=payment.id, message=failure.message)
                return Error(AppErrors.provider_error(self._provider.name, failure.message, failure.payload))
            case Ok(_):
                pass

        total = payment.refund_amount + requested
        status = PaymentStatus.REFUNDED if total >= payment.amount else PaymentStatus.PARTIAL_REFUNDED
        refunded_at = self._clock()

        match await self._payments.transition(
            payment.id,
            allowed_from=REFUNDABLE_STATUSES,
            expected_refund_amount=payment.refund_amount,
            values={
                "status": status,
                "refund_amount": total,
                "refund_reason": reason,
                "refunded_at": refunded_at,
            },
        ):
            case Error(e):
                return Error(e)
            case Ok(None):
                logger.warning("refund.lost_update", payment_id=payment.id)
                return Error(AppErrors.refund_not_allowed(
                    "Payment was modified concurrently",
                    payment_id=payment.id,
                ))
            case Ok(_):
                pass

        mirrored = (
            OrderPaymentStatus.REFUNDED
            if status == PaymentStatus.REFUNDED
            else OrderPaymentStatus.PARTIAL_REFUNDED
        )
        match await self._orders.set_payment_status(
            payment.order_id,
            mirrored,
            allowed_from=(OrderPaymentStatus.PAID, OrderPaymentStatus.PARTIAL_REFUNDED),
        ):
            case Error(e):
                return Error(e)
            case Ok(_):
                pass

        logger.info(
            "payment.refunded",
            payment_id=payment.id,
            refunded=requested,
            refund_amount=total,
            status=str(status),
        )
        return Ok(RefundResult(
            payment_id=payment.id,
            status=status,
            refunded=requested,
            refund_amount=total,
            refunded_at=refunded_at,
        ))


__all__ = ("RefundLedger", "DEFAULT_REFUND_REASON")
