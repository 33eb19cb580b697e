"""
Webhook reconciler — provider-pushed payment events.

Deliveries may be replayed, reordered or race the synchronous confirm.
Every accepted delivery leaves one audit row; state changes go through
the same guarded settle() as confirm, so a replay never applies twice.

Signature: HMAC-SHA256 of the raw body with the webhook secret, hex,
optionally prefixed "v1=". Without a configured secret nothing is checked.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Mapping, Sequence
from enum import StrEnum
from typing import Any

import structlog
from kungfu import Result, Ok, Error
from pydantic import ValidationError

from ordergate._types import Clock, utcnow
from ordergate.errors import AppError, AppErrors
from ordergate.orders import OrderPaymentStatus, OrderRepository, OrderSnapshot
from ordergate.payments._repo import PaymentRepository
from ordergate.payments._settle import settle
from ordergate.payments._types import (
    OPEN_STATUSES,
    PROVIDER_TOSS,
    NewPayment,
    PaymentRecord,
    PaymentStatus,
    WebhookEvent,
)

logger = structlog.get_logger(__name__)

DEFAULT_SIGNATURE_HEADER = "toss-signature"
DEFAULT_CANCEL_REASON = "Cancelled by customer"

CANCELLABLE_STATUSES = (
    PaymentStatus.PENDING,
    PaymentStatus.FAILED,
    PaymentStatus.SUCCESS,
    PaymentStatus.PARTIAL_REFUNDED,
)

ORDER_CANCELLABLE_STATUSES = (
    OrderPaymentStatus.PENDING,
    OrderPaymentStatus.FAILED,
    OrderPaymentStatus.PAID,
    OrderPaymentStatus.PARTIAL_REFUNDED,
)


class WebhookOutcome(StrEnum):
    APPLIED = "APPLIED"
    NOOP = "NOOP"
    IGNORED = "IGNORED"


# ═══════════════════════════════════════════════════════════════════════════════
# Signature
# ═══════════════════════════════════════════════════════════════════════════════


def header_value(headers: Mapping[str, Any], name: str) -> str | None:
    """Case-insensitive header lookup; list values yield their first entry."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() != wanted:
            continue
        if isinstance(value, Sequence) and not isinstance(value, str):
            return str(value[0]) if value else None
        return value
    return None


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    if not secret:
        return True
    if not signature:
        return False

    provided = signature.removeprefix("v1=")
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(provided.encode(), expected.encode())


def _loose_json(body: bytes) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return {"raw": body.decode("utf-8", errors="replace")}


# ═══════════════════════════════════════════════════════════════════════════════
# Reconciler
# ═══════════════════════════════════════════════════════════════════════════════


class WebhookReconciler:
    def __init__(
        self,
        orders: OrderRepository,
        payments: PaymentRepository,
        *,
        secret: str | None = None,
        signature_header: str = DEFAULT_SIGNATURE_HEADER,
        clock: Clock = utcnow,
    ) -> None:
        self._orders = orders
        self._payments = payments
        self._secret = secret
        self._signature_header = signature_header
        self._clock = clock

    async def handle(
        self,
        body: bytes,
        headers: Mapping[str, Any],
    ) -> Result[WebhookOutcome, AppError]:
        payload = _loose_json(body)
        event_type = payload.get("eventType") if isinstance(payload, dict) else None

        signature = header_value(headers, self._signature_header)
        if not verify_signature(body, signature, self._secret):
            rejected = AppErrors.signature_verification_failed()
            await self._payments.log_webhook(
                provider=PROVIDER_TOSS,
                event_type=event_type,
                body=payload,
                headers=headers,
                error_message=rejected.message,
            )
            logger.warning("webhook.signature_rejected", event_type=event_type)
            return Error(rejected)

        try:
            event = WebhookEvent.model_validate(payload)
        except ValidationError as exc:
            invalid = AppErrors.invalid_request(
                "Malformed webhook payload",
                errors=exc.errors(include_url=False, include_context=False, include_input=False),
            )
            await self._payments.log_webhook(
                provider=PROVIDER_TOSS,
                event_type=event_type,
                body=payload,
                headers=headers,
                error_message=invalid.message,
            )
            return Error(invalid)

        match await self._payments.find_by_payment_key(event.data.payment_key):
            case Error(e):
                await self._payments.log_webhook(
                    provider=PROVIDER_TOSS,
                    event_type=event.event_type,
                    body=payload,
                    headers=headers,
                    error_message=str(e),
                )
                logger.error("webhook.failed", event_type=event.event_type, code=e.code)
                return Error(e)
            case Ok(by_key):
                pass

        log_id = await self._payments.log_webhook(
            provider=PROVIDER_TOSS,
            event_type=event.event_type,
            body=payload,
            headers=headers,
            payment_id=by_key.id if by_key else None,
        )

        match event.event_type:
            case "PAYMENT_CONFIRMED":
                result = await self._confirmed(event, by_key)
            case "PAYMENT_CANCELLED":
                result = await self._cancelled(event, by_key)
            case _:
                logger.warning("webhook.unhandled_event", event_type=event.event_type)
                result = Ok(WebhookOutcome.IGNORED)

        match result:
            case Ok(outcome):
                await self._payments.mark_webhook(log_id, processed_at=self._clock())
                logger.info(
                    "webhook.processed",
                    event_type=event.event_type,
                    order_ref=event.data.order_id,
                    outcome=str(outcome),
                )
            case Error(e):
                await self._payments.mark_webhook(log_id, error_message=str(e))
                logger.error("webhook.failed", event_type=event.event_type, code=e.code)
        return result

    # ─── Lookup ───────────────────────────────────────────────────────────────

    async def _target(
        self,
        event: WebhookEvent,
        by_key: PaymentRecord | None,
    ) -> Result[tuple[OrderSnapshot, PaymentRecord | None] | None, AppError]:
        """Order named by the event and its payment row; None if the order is unknown."""
        match await self._orders.find_by_ref(event.data.order_id):
            case Error(e):
                return Error(e)
            case Ok(None):
                logger.warning("webhook.order_not_found", order_ref=event.data.order_id)
                return Ok(None)
            case Ok(order):
                pass

        if by_key is not None:
            if by_key.order_id != order.id:
                return Error(AppErrors.payment_not_allowed(
                    "Payment key belongs to another order",
                    order_id=order.id,
                    payment_id=by_key.id,
                ))
            return Ok((order, by_key))

        match await self._payments.find_by_order(order.id):
            case Error(e):
                return Error(e)
            case Ok(existing):
                return Ok((order, existing))

    # ─── PAYMENT_CONFIRMED ────────────────────────────────────────────────────

    async def _confirmed(
        self,
        event: WebhookEvent,
        by_key: PaymentRecord | None,
    ) -> Result[WebhookOutcome, AppError]:
        match await self._target(event, by_key):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Ok(WebhookOutcome.IGNORED)
            case Ok((order, existing)):
                pass

        data = event.data
        if data.amount is not None and data.amount != order.total_amount:
            return Error(AppErrors.amount_mismatch(order.total_amount, data.amount))
        if existing is not None and data.amount is not None and existing.amount != data.amount:
            return Error(AppErrors.amount_mismatch(existing.amount, data.amount))

        if existing is not None:
            if existing.status == PaymentStatus.SUCCESS:
                return Ok(WebhookOutcome.NOOP)
            if existing.status not in OPEN_STATUSES:
                logger.warning(
                    "webhook.confirm_after_close",
                    payment_id=existing.id,
                    status=str(existing.status),
                )
                return Ok(WebhookOutcome.IGNORED)

        now = self._clock()
        metadata = data.model_dump(by_alias=True)
        match await settle(
            self._payments,
            existing=existing,
            new=NewPayment(
                order_id=order.id,
                amount=data.amount if data.amount is not None else order.total_amount,
                status=PaymentStatus.SUCCESS,
                payment_method=order.payment_method,
                provider_payment_id=data.payment_key,
                provider_payment_key=data.payment_key,
                paid_at=now,
                metadata=metadata,
            ),
            allowed_from=OPEN_STATUSES,
            values={
                "status": PaymentStatus.SUCCESS,
                "provider_payment_key": data.payment_key,
                "paid_at": now,
                "failure_reason": None,
                "provider_metadata": metadata,
            },
        ):
            case Error(e):
                return Error(e)
            case Ok(settled):
                pass

        if not settled.applied:
            return Ok(WebhookOutcome.NOOP)

        match await self._orders.set_payment_status(
            order.id,
            OrderPaymentStatus.PAID,
            allowed_from=(OrderPaymentStatus.PENDING, OrderPaymentStatus.FAILED),
        ):
            case Error(e):
                return Error(e)
            case Ok(_):
                logger.info("payment.confirmed_by_webhook", order_id=order.id)
                return Ok(WebhookOutcome.APPLIED)

    # ─── PAYMENT_CANCELLED ────────────────────────────────────────────────────

    async def _cancelled(
        self,
        event: WebhookEvent,
        by_key: PaymentRecord | None,
    ) -> Result[WebhookOutcome, AppError]:
        match await self._target(event, by_key):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Ok(WebhookOutcome.IGNORED)
            case Ok((order, existing)):
                pass

        if existing is not None and existing.status not in CANCELLABLE_STATUSES:
            return Ok(WebhookOutcome.NOOP)

        now = self._clock()
        data = event.data
        reason = data.cancellation_reason or DEFAULT_CANCEL_REASON
        match await settle(
            self._payments,
            existing=existing,
            new=NewPayment(
                order_id=order.id,
                amount=data.amount if data.amount is not None else order.total_amount,
                status=PaymentStatus.CANCELLED,
                payment_method=order.payment_method,
                provider_payment_key=data.payment_key,
                cancel_reason=reason,
                cancelled_at=now,
            ),
            allowed_from=CANCELLABLE_STATUSES,
            values={
                "status": PaymentStatus.CANCELLED,
                "cancel_reason": reason,
                "cancelled_at": now,
            },
        ):
            case Error(e):
                return Error(e)
            case Ok(settled):
                pass

        if not settled.applied:
            return Ok(WebhookOutcome.NOOP)

        match await self._orders.set_payment_status(
            order.id,
            OrderPaymentStatus.CANCELLED,
            allowed_from=ORDER_CANCELLABLE_STATUSES,
        ):
            case Error(e):
                return Error(e)
            case Ok(_):
                logger.info("payment.cancelled_by_webhook", order_id=order.id, reason=reason)
                return Ok(WebhookOutcome.APPLIED)


__all__ = (
    "WebhookOutcome",
    "WebhookReconciler",
    "verify_signature",
    "header_value",
    "DEFAULT_SIGNATURE_HEADER",
    "DEFAULT_CANCEL_REASON",
)
