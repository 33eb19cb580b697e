"""
Payment confirmation engine — prepare and confirm against the provider.

    prepare ─► order payable? amount matches? ─► checkout info
    confirm ─► order checks ─► idempotency key ─► existing payment ─► provider
                                                                        │
                                              SUCCESS row + order PAID ◄┘
                                              (FAILED row on provider error)

A second confirm after success returns the stored payment and never
calls the provider again.
"""

from __future__ import annotations

import structlog
from kungfu import Result, Ok, Error

from ordergate._types import Clock, utcnow
from ordergate.errors import AppError, AppErrors
from ordergate.orders import OrderPaymentStatus, OrderRepository, OrderSnapshot, OrderStatus
from ordergate.payments._provider import PaymentProvider, ProviderFailure, ProviderPayment
from ordergate.payments._repo import PaymentRepository
from ordergate.payments._settle import settle
from ordergate.payments._types import (
    CLOSED_STATUSES,
    OPEN_STATUSES,
    ConfirmPaymentRequest,
    ConfirmedPayment,
    NewPayment,
    PaymentRecord,
    PaymentStatus,
    PreparePaymentRequest,
    PreparedPayment,
)

logger = structlog.get_logger(__name__)


def order_name(order: OrderSnapshot) -> str:
    """First product name, "<first> and N more" for multi-line orders."""
    if not order.items:
        return f"Order {order.order_no}"
    first = order.items[0].product_name or "Item"
    extra = len(order.items) - 1
    return f"{first} and {extra} more" if extra else first


class PaymentConfirmationEngine:
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

    async def _payable_order(self, order_ref: str, amount: int) -> Result[OrderSnapshot, AppError]:
        match await self._orders.find_by_ref(order_ref):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(AppErrors.order_not_found(order_ref))
            case Ok(order):
                pass

        if order.status == OrderStatus.CANCELLED:
            return Error(AppErrors.payment_not_allowed("Order is cancelled", order_id=order.id))
        if order.total_amount != amount:
            return Error(AppErrors.amount_mismatch(order.total_amount, amount))
        return Ok(order)

    # ─── Prepare ──────────────────────────────────────────────────────────────

    async def prepare(self, request: PreparePaymentRequest) -> Result[PreparedPayment, AppError]:
        match await self._orders.find_by_ref(request.order_ref):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(AppErrors.order_not_found(request.order_ref))
            case Ok(order):
                pass

        if order.status == OrderStatus.CANCELLED:
            return Error(AppErrors.payment_not_allowed("Order is cancelled", order_id=order.id))
        if order.payment_status == OrderPaymentStatus.PAID:
            return Error(AppErrors.order_already_paid(order.id))
        if order.total_amount != request.amount:
            return Error(AppErrors.amount_mismatch(order.total_amount, request.amount))

        match await self._payments.find_by_order(order.id):
            case Error(e):
                return Error(e)
            case Ok(PaymentRecord(status=PaymentStatus.SUCCESS)):
                return Error(AppErrors.order_already_paid(order.id))
            case Ok(_):
                pass

        logger.info("payment.prepared", order_id=order.id, amount=order.total_amount)
        return Ok(PreparedPayment(
            order_id=order.id,
            order_no=order.order_no,
            amount=order.total_amount,
            order_name=order_name(order),
            customer_name=order.customer_name or "Customer",
            customer_phone=order.customer_phone or "",
        ))

    # ─── Confirm ──────────────────────────────────────────────────────────────

    async def confirm(self, request: ConfirmPaymentRequest) -> Result[ConfirmedPayment, AppError]:
        match await self._payable_order(request.order_ref, request.amount):
            case Error(e):
                return Error(e)
            case Ok(order):
                pass

        if request.idempotency_key:
            match await self._payments.find_by_idempotency_key(request.idempotency_key):
                case Error(e):
                    return Error(e)
                case Ok(None):
                    pass
                case Ok(keyed) if keyed.order_id != order.id:
                    return Error(AppErrors.payment_not_allowed(
                        "Idempotency key already used for another order",
                        idempotency_key=request.idempotency_key,
                    ))
                case Ok(keyed) if keyed.amount != request.amount:
                    return Error(AppErrors.amount_mismatch(keyed.amount, request.amount))
                case Ok(keyed) if keyed.status == PaymentStatus.SUCCESS:
                    logger.info("payment.confirm_replayed", payment_id=keyed.id, order_id=order.id)
                    return Ok(ConfirmedPayment.from_record(keyed))
                case Ok(_):
                    pass

        match await self._payments.find_by_order(order.id):
            case Error(e):
                return Error(e)
            case Ok(existing):
                pass

        if existing is not None:
            if existing.status == PaymentStatus.SUCCESS:
                if existing.amount != request.amount:
                    return Error(AppErrors.amount_mismatch(existing.amount, request.amount))
                logger.info("payment.already_confirmed", payment_id=existing.id, order_id=order.id)
                return Ok(ConfirmedPayment.from_record(existing))
            if existing.status in CLOSED_STATUSES:
                return Error(AppErrors.payment_not_allowed(
                    f"Payment is {existing.status}",
                    payment_id=existing.id,
                    status=str(existing.status),
                ))

        match await self._provider.confirm(request.payment_key, request.order_ref, request.amount):
            case Error(failure):
                return await self._record_failure(order, existing, request, failure)
            case Ok(approved):
                return await self._record_success(order, existing, request, approved)

    def _key_for(self, existing: PaymentRecord | None, request: ConfirmPaymentRequest) -> dict[str, str]:
        if request.idempotency_key and (existing is None or existing.idempotency_key is None):
            return {"idempotency_key": request.idempotency_key}
        return {}

    async def _record_failure(
        self,
        order: OrderSnapshot,
        existing: PaymentRecord | None,
        request: ConfirmPaymentRequest,
        failure: ProviderFailure,
    ) -> Result[ConfirmedPayment, AppError]:
        now = self._clock()
        logger.error(
            "payment.provider_failed",
            order_id=order.id,
            message=failure.message,
        )

        match await settle(
            self._payments,
            existing=existing,
            new=NewPayment(
                order_id=order.id,
                amount=request.amount,
                status=PaymentStatus.FAILED,
                payment_method=request.payment_method,
                provider_payment_key=request.payment_key,
                idempotency_key=request.idempotency_key,
                failure_reason=failure.message,
                failed_at=now,
            ),
            allowed_from=OPEN_STATUSES,
            values={
                "status": PaymentStatus.FAILED,
                "provider_payment_key": request.payment_key,
                "failure_reason": failure.message,
                "failed_at": now,
                **self._key_for(existing, request),
            },
        ):
            case Error(e):
                logger.warning("payment.failure_not_recorded", order_id=order.id, error=str(e))
            case Ok(_):
                pass

        return Error(AppErrors.provider_error(self._provider.name, failure.message, failure.payload))

    async def _record_success(
        self,
        order: OrderSnapshot,
        existing: PaymentRecord | None,
        request: ConfirmPaymentRequest,
        approved: ProviderPayment,
    ) -> Result[ConfirmedPayment, AppError]:
        paid_at = approved.approved_at or self._clock()
        metadata = dict(approved.raw or {})

        match await settle(
            self._payments,
            existing=existing,
            new=NewPayment(
                order_id=order.id,
                amount=request.amount,
                status=PaymentStatus.SUCCESS,
                payment_method=request.payment_method,
                provider_payment_id=approved.payment_id,
                provider_payment_key=request.payment_key,
                idempotency_key=request.idempotency_key,
                paid_at=paid_at,
                metadata=metadata,
            ),
            allowed_from=OPEN_STATUSES,
            values={
                "status": PaymentStatus.SUCCESS,
                "provider_payment_id": approved.payment_id,
                "provider_payment_key": request.payment_key,
                "paid_at": paid_at,
                "failure_reason": None,
                "provider_metadata": metadata,
                **self._key_for(existing, request),
            },
        ):
            case Error(e):
                return Error(e)
            case Ok(settled):
                pass

        payment = settled.record
        if payment is None or payment.status != PaymentStatus.SUCCESS:
            status = str(payment.status) if payment is not None else "missing"
            return Error(AppErrors.payment_not_allowed(
                f"Payment is {status}",
                order_id=order.id,
                status=status,
            ))

        match await self._orders.set_payment_status(
            order.id,
            OrderPaymentStatus.PAID,
            allowed_from=(OrderPaymentStatus.PENDING, OrderPaymentStatus.FAILED),
        ):
            case Error(e):
                return Error(e)
            case Ok(_):
                pass

        if settled.applied:
            logger.info(
                "payment.confirmed",
                payment_id=payment.id,
                order_id=order.id,
                amount=payment.amount,
                mock=self._provider.mock_mode,
            )
        return Ok(ConfirmedPayment.from_record(payment))


__all__ = ("PaymentConfirmationEngine", "order_name")
