import hashlib
import hmac
import json

import pytest
from kungfu import Error

from ordergate.db import OrderTable, PaymentTable, WebhookLogTable
from ordergate.errors import AppErrors
from ordergate.orders import OrderRepository
from ordergate.payments import (
    DEFAULT_CANCEL_REASON,
    ConfirmPaymentRequest,
    PaymentRepository,
    ProviderFailure,
    RefundRequest,
    WebhookOutcome,
    WebhookReconciler,
    header_value,
    verify_signature,
)

from conftest import err, ok

SECRET = "whsec_test"


def sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def event(event_type, order_id, payment_key="pk_1", **data):
    body = {
        "eventType": event_type,
        "createdAt": "2026-02-10T12:00:00+09:00",
        "data": {"orderId": order_id, "paymentKey": payment_key, **data},
    }
    return json.dumps(body).encode()


def signed(body: bytes) -> dict:
    return {"Toss-Signature": f"v1={sign(body)}", "Content-Type": "application/json"}


@pytest.fixture
def webhooks(db, clock):
    return WebhookReconciler(
        OrderRepository(db, clock),
        PaymentRepository(db, clock),
        secret=SECRET,
        clock=clock,
    )


@pytest.fixture
async def order(services, store, make_request):
    p1 = await store.product(price=1000)
    return ok(await services.orders.create_order(make_request((p1, 2))))


# ═══════════════════════════════════════════════════════════════════════════════
# Signature
# ═══════════════════════════════════════════════════════════════════════════════


class TestVerifySignature:
    body = b'{"eventType":"PAYMENT_CONFIRMED"}'

    def test_bare_hex(self):
        assert verify_signature(self.body, sign(self.body), SECRET)

    def test_v1_prefix(self):
        assert verify_signature(self.body, "v1=" + sign(self.body), SECRET)

    def test_wrong_secret(self):
        assert not verify_signature(self.body, sign(self.body, "other"), SECRET)

    def test_tampered_body(self):
        assert not verify_signature(self.body + b" ", sign(self.body), SECRET)

    def test_missing_signature(self):
        assert not verify_signature(self.body, None, SECRET)
        assert not verify_signature(self.body, "", SECRET)

    def test_no_secret_accepts_anything(self):
        assert verify_signature(self.body, None, None)
        assert verify_signature(self.body, "garbage", "")


class TestHeaderValue:
    def test_case_insensitive(self):
        assert header_value({"Toss-Signature": "abc"}, "toss-signature") == "abc"

    def test_list_takes_first(self):
        assert header_value({"toss-signature": ["a", "b"]}, "toss-signature") == "a"

    def test_missing(self):
        assert header_value({}, "toss-signature") is None


# ═══════════════════════════════════════════════════════════════════════════════
# Reconciliation
# ═══════════════════════════════════════════════════════════════════════════════


class TestRejected:
    async def test_invalid_signature_only_audits(self, webhooks, store, order):
        body = event("PAYMENT_CONFIRMED", order.id, amount=2000)

        error = err(await webhooks.handle(body, {"toss-signature": "v1=deadbeef"}))

        assert error.code == "WEBHOOK_SIGNATURE_VERIFICATION_FAILED"
        assert error.status == 401
        assert await store.count(PaymentTable) == 0
        assert (await store.order(order.id)).payment_status == "PENDING"

        [log] = await store.rows(WebhookLogTable)
        assert log.processed is False
        assert log.event_type == "PAYMENT_CONFIRMED"
        assert log.error_message == "Webhook signature verification failed"

    async def test_missing_signature_header(self, webhooks, order):
        body = event("PAYMENT_CONFIRMED", order.id)
        assert err(await webhooks.handle(body, {})).status == 401

    async def test_malformed_payload(self, webhooks, store):
        body = json.dumps({"eventType": "PAYMENT_CONFIRMED"}).encode()

        error = err(await webhooks.handle(body, signed(body)))

        assert error.code == "INVALID_REQUEST"
        [log] = await store.rows(WebhookLogTable)
        assert log.error_message == "Malformed webhook payload"

    async def test_non_json_body(self, webhooks, store):
        body = b"not json"
        assert err(await webhooks.handle(body, signed(body))).code == "INVALID_REQUEST"
        [log] = await store.rows(WebhookLogTable)
        assert log.request_body == {"raw": "not json"}

    async def test_lookup_failure_still_audited(self, db, clock, store, order):
        class BrokenLookup(PaymentRepository):
            async def find_by_payment_key(self, payment_key):
                return Error(AppErrors.storage("load payment by provider key", RuntimeError("db down")))

        webhooks = WebhookReconciler(
            OrderRepository(db, clock), BrokenLookup(db, clock), secret=SECRET, clock=clock
        )
        body = event("PAYMENT_CONFIRMED", order.id, amount=2000)

        assert err(await webhooks.handle(body, signed(body))).code == "STORAGE_ERROR"

        [log] = await store.rows(WebhookLogTable)
        assert log.payment_id is None
        assert log.processed is False
        assert log.event_type == "PAYMENT_CONFIRMED"
        assert "STORAGE_ERROR" in log.error_message
        assert await store.count(PaymentTable) == 0


class TestConfirmedEvent:
    async def test_applies_once(self, webhooks, store, order):
        body = event("PAYMENT_CONFIRMED", order.id, amount=2000)

        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.APPLIED
        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.NOOP

        [payment] = await store.rows(PaymentTable)
        assert payment.status == "SUCCESS"
        assert payment.provider_payment_key == "pk_1"
        assert payment.amount == 2000
        assert (await store.order(order.id)).payment_status == "PAID"

        logs = await store.rows(WebhookLogTable)
        assert len(logs) == 2
        assert all(log.processed for log in logs)
        assert sum(log.payment_id == payment.id for log in logs) == 1

    async def test_after_synchronous_confirm_is_noop(self, services, webhooks, store, order):
        ok(await services.payments.confirm(ConfirmPaymentRequest(order.id, "pk_1", 2000)))

        body = event("PAYMENT_CONFIRMED", order.order_no, amount=2000)
        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.NOOP
        assert await store.count(PaymentTable) == 1

    async def test_amount_mismatch_is_recorded(self, webhooks, store, order):
        body = event("PAYMENT_CONFIRMED", order.id, amount=1500)

        error = err(await webhooks.handle(body, signed(body)))

        assert error.code == "PAYMENT_AMOUNT_MISMATCH"
        assert await store.count(PaymentTable) == 0
        [log] = await store.rows(WebhookLogTable)
        assert log.processed is False
        assert "PAYMENT_AMOUNT_MISMATCH" in log.error_message

    async def test_failed_payment_recovers(self, services, webhooks, store, provider, order):
        provider.fail_with = ProviderFailure("timeout")
        err(await services.payments.confirm(ConfirmPaymentRequest(order.id, "pk_1", 2000)))

        body = event("PAYMENT_CONFIRMED", order.id, amount=2000)
        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.APPLIED

        [payment] = await store.rows(PaymentTable)
        assert payment.status == "SUCCESS"
        assert payment.failure_reason is None

    @pytest.mark.parametrize(
        ("refund", "payment_status"),
        [
            (RefundRequest(), "REFUNDED"),
            (RefundRequest(amount=500), "PARTIAL_REFUNDED"),
        ],
    )
    async def test_stale_event_after_refund_ignored(
        self, services, webhooks, store, order, refund, payment_status
    ):
        confirmed = ok(await services.payments.confirm(ConfirmPaymentRequest(order.id, "pk_1", 2000)))
        ok(await services.refunds.refund(confirmed.payment_id, refund))

        body = event("PAYMENT_CONFIRMED", order.id, amount=2000)
        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.IGNORED

        [payment] = await store.rows(PaymentTable)
        assert payment.status == payment_status
        assert (await store.order(order.id)).payment_status == payment_status
        [log] = await store.rows(WebhookLogTable)
        assert log.processed is True
        assert log.error_message is None

    async def test_stale_event_after_cancel_ignored(self, services, webhooks, store, order):
        cancel = event("PAYMENT_CANCELLED", order.id)
        ok(await webhooks.handle(cancel, signed(cancel)))

        body = event("PAYMENT_CONFIRMED", order.id, amount=2000)
        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.IGNORED

        [payment] = await store.rows(PaymentTable)
        assert payment.status == "CANCELLED"
        assert (await store.order(order.id)).payment_status == "CANCELLED"
        assert all(log.processed for log in await store.rows(WebhookLogTable))

    async def test_unknown_order_ignored(self, webhooks, store):
        body = event("PAYMENT_CONFIRMED", "20260210-000000", amount=2000)
        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.IGNORED
        assert await store.count(PaymentTable) == 0

    async def test_payment_key_of_other_order(self, services, webhooks, store, make_request, order):
        ok(await services.payments.confirm(ConfirmPaymentRequest(order.id, "pk_1", 2000)))
        p2 = await store.product(name="Tea", price=300)
        other = ok(await services.orders.create_order(make_request((p2, 1), name="Lee")))

        body = event("PAYMENT_CONFIRMED", other.id, payment_key="pk_1", amount=300)
        assert err(await webhooks.handle(body, signed(body))).code == "PAYMENT_NOT_ALLOWED"


class TestCancelledEvent:
    async def test_cancels_payment_keeps_order_status(self, services, webhooks, store, order):
        ok(await services.payments.confirm(ConfirmPaymentRequest(order.id, "pk_1", 2000)))

        body = event("PAYMENT_CANCELLED", order.id)
        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.APPLIED

        [payment] = await store.rows(PaymentTable)
        assert payment.status == "CANCELLED"
        assert payment.cancel_reason == DEFAULT_CANCEL_REASON
        assert payment.cancelled_at is not None

        row = await store.order(order.id)
        assert row.status == "CREATED"
        assert row.payment_status == "CANCELLED"

    async def test_mirrors_payment_status_on_cancelled_order(self, services, webhooks, store, order):
        ok(await services.payments.confirm(ConfirmPaymentRequest(order.id, "pk_1", 2000)))
        await store.set_order(order.id, status="CANCELLED")

        body = event("PAYMENT_CANCELLED", order.id)
        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.APPLIED

        [payment] = await store.rows(PaymentTable)
        assert payment.status == "CANCELLED"
        row = await store.order(order.id)
        assert row.status == "CANCELLED"
        assert row.payment_status == "CANCELLED"

    async def test_uses_provider_reason(self, webhooks, store, order):
        body = event("PAYMENT_CANCELLED", order.id, cancellationReason="Out of stock")
        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.APPLIED
        [payment] = await store.rows(PaymentTable)
        assert payment.cancel_reason == "Out of stock"

    async def test_replayed_cancel_is_noop(self, services, webhooks, order):
        ok(await services.payments.confirm(ConfirmPaymentRequest(order.id, "pk_1", 2000)))

        body = event("PAYMENT_CANCELLED", order.id)
        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.APPLIED
        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.NOOP

    async def test_cancel_after_full_refund_is_noop(self, services, webhooks, store, order):
        confirmed = ok(await services.payments.confirm(ConfirmPaymentRequest(order.id, "pk_1", 2000)))
        ok(await services.refunds.refund(confirmed.payment_id, RefundRequest()))

        body = event("PAYMENT_CANCELLED", order.id)
        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.NOOP

        [payment] = await store.rows(PaymentTable)
        assert payment.status == "REFUNDED"
        assert (await store.order(order.id)).status != "CANCELLED"


class TestOtherEvents:
    async def test_unknown_event_ignored_but_processed(self, webhooks, store, order):
        body = event("DEPOSIT_CALLBACK", order.id)

        assert ok(await webhooks.handle(body, signed(body))) == WebhookOutcome.IGNORED

        [log] = await store.rows(WebhookLogTable)
        assert log.processed is True
        assert log.event_type == "DEPOSIT_CALLBACK"

    async def test_unsigned_accepted_without_secret(self, services, store, order):
        body = event("PAYMENT_CONFIRMED", order.id, amount=2000)
        assert ok(await services.webhooks.handle(body, {})) == WebhookOutcome.APPLIED
        assert await store.count(OrderTable, OrderTable.payment_status == "PAID") == 1
