import pytest
from sqlalchemy import update

from ordergate.db import PaymentTable
from ordergate.payments import (
    DEFAULT_REFUND_REASON,
    ConfirmPaymentRequest,
    PaymentStatus,
    ProviderFailure,
    RefundRequest,
)

from conftest import BRANCH, OTHER_BRANCH, err, ok


@pytest.fixture
async def payment(services, store, make_request):
    p1 = await store.product(price=5000)
    order = ok(await services.orders.create_order(make_request((p1, 2))))
    return ok(await services.payments.confirm(ConfirmPaymentRequest(order.id, "pk_9", 10_000)))


class TestFullRefund:
    async def test_refunds_whole_balance(self, services, store, provider, payment):
        result = ok(await services.refunds.refund(payment.payment_id, RefundRequest()))

        assert result.status == PaymentStatus.REFUNDED
        assert result.refunded == 10_000
        assert result.refund_amount == 10_000
        assert provider.cancel_calls == [("pk_9", 10_000, DEFAULT_REFUND_REASON)]

        [row] = await store.rows(PaymentTable)
        assert row.status == "REFUNDED"
        assert row.refund_amount == 10_000
        assert row.refunded_at is not None
        assert (await store.order(payment.order_id)).payment_status == "REFUNDED"

    async def test_second_full_refund_rejected(self, services, provider, payment):
        ok(await services.refunds.refund(payment.payment_id, RefundRequest()))

        error = err(await services.refunds.refund(payment.payment_id, RefundRequest()))

        assert error.code == "REFUND_NOT_ALLOWED"
        assert error.status == 403
        assert len(provider.cancel_calls) == 1


class TestPartialRefund:
    async def test_partial_then_rest(self, services, store, payment):
        first = ok(await services.refunds.refund(
            payment.payment_id, RefundRequest(amount=3000, reason="Missing item")
        ))
        assert first.status == PaymentStatus.PARTIAL_REFUNDED
        assert first.refund_amount == 3000
        assert (await store.order(payment.order_id)).payment_status == "PARTIAL_REFUNDED"

        rest = ok(await services.refunds.refund(payment.payment_id, RefundRequest()))
        assert rest.refunded == 7000
        assert rest.refund_amount == 10_000
        assert rest.status == PaymentStatus.REFUNDED

        [row] = await store.rows(PaymentTable)
        assert row.refund_reason == DEFAULT_REFUND_REASON

    async def test_more_than_available_rejected(self, services, store, provider, payment):
        ok(await services.refunds.refund(payment.payment_id, RefundRequest(amount=4000)))

        error = err(await services.refunds.refund(payment.payment_id, RefundRequest(amount=6001)))

        assert error.code == "REFUND_AMOUNT_EXCEEDED"
        assert error.status == 400
        assert error.details == {"requested": 6001, "available": 6000}
        assert len(provider.cancel_calls) == 1
        assert (await store.rows(PaymentTable))[0].refund_amount == 4000

    async def test_exact_remaining_balance(self, services, payment):
        ok(await services.refunds.refund(payment.payment_id, RefundRequest(amount=4000)))
        result = ok(await services.refunds.refund(payment.payment_id, RefundRequest(amount=6000)))
        assert result.status == PaymentStatus.REFUNDED

    @pytest.mark.parametrize("amount", [0, -100])
    async def test_non_positive_amount(self, services, payment, amount):
        error = err(await services.refunds.refund(payment.payment_id, RefundRequest(amount=amount)))
        assert error.code == "INVALID_REQUEST"


class TestRefundGuards:
    async def test_unknown_payment(self, services):
        assert err(await services.refunds.refund("nope", RefundRequest())).status == 404

    async def test_branch_scoped(self, services, payment):
        error = err(await services.refunds.refund(
            payment.payment_id, RefundRequest(branch_id=OTHER_BRANCH)
        ))
        assert error.status == 404

        ok(await services.refunds.refund(payment.payment_id, RefundRequest(branch_id=BRANCH)))

    async def test_failed_payment_not_refundable(self, services, store, provider, make_request):
        p1 = await store.product(price=1000)
        order = ok(await services.orders.create_order(make_request((p1, 1))))
        provider.fail_with = ProviderFailure("declined")
        err(await services.payments.confirm(ConfirmPaymentRequest(order.id, "pk_x", 1000)))
        provider.fail_with = None

        [row] = await store.rows(PaymentTable)
        error = err(await services.refunds.refund(row.id, RefundRequest()))
        assert error.code == "REFUND_NOT_ALLOWED"
        assert error.details["status"] == "FAILED"

    async def test_provider_failure_changes_nothing(self, services, store, provider, payment):
        provider.fail_with = ProviderFailure("cancel rejected", {"code": "ALREADY_CANCELED"})

        error = err(await services.refunds.refund(payment.payment_id, RefundRequest()))

        assert error.code == "PAYMENT_PROVIDER_ERROR"
        [row] = await store.rows(PaymentTable)
        assert row.status == "SUCCESS"
        assert row.refund_amount == 0

    async def test_missing_payment_key(self, services, db, provider, payment):
        async with db() as session:
            await session.execute(
                update(PaymentTable)
                .where(PaymentTable.id == payment.payment_id)
                .values(provider_payment_key=None)
            )
            await session.commit()

        error = err(await services.refunds.refund(payment.payment_id, RefundRequest()))

        assert error.code == "PAYMENT_PROVIDER_ERROR"
        assert provider.cancel_calls == []

    async def test_missing_key_allowed_in_mock_mode(self, services, db, provider, payment):
        provider.mock_mode = True
        async with db() as session:
            await session.execute(
                update(PaymentTable)
                .where(PaymentTable.id == payment.payment_id)
                .values(provider_payment_key=None)
            )
            await session.commit()

        result = ok(await services.refunds.refund(payment.payment_id, RefundRequest()))
        assert result.status == PaymentStatus.REFUNDED
