"""
HTTP boundary — FastAPI routes over the services.

Request models translate to domain requests with to_domain(); response
models are built from domain values with from_domain(). An Error result
becomes a JSON body {code, message, details} with the error's status.

    app = create_app(services)            # tests, embedding
    app = create_app()                    # uvicorn --factory; wires from env on startup
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Any

import structlog
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from kungfu import Result, Ok, Error
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ordergate._logging import bind_request, clear_request, configure_logging
from ordergate.app import Services, build_services
from ordergate.config import get_settings
from ordergate.db import create_database
from ordergate.errors import AppError
from ordergate.orders import CreateOrderRequest, OrderLineRequest, OrderReceipt, PaymentMethod
from ordergate.payments import (
    ConfirmPaymentRequest,
    ConfirmedPayment,
    PaymentPage,
    PaymentRecord,
    PaymentStatus,
    PaymentStatusView,
    PreparePaymentRequest,
    PreparedPayment,
    RefundRequest,
    RefundResult,
    WebhookOutcome,
)

logger = structlog.get_logger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# Models
# ═══════════════════════════════════════════════════════════════════════════════


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderItemIn(CamelModel):
    product_id: str
    qty: int
    options: list[str] = Field(default_factory=list)


class CreateOrderIn(CamelModel):
    branch_id: str
    items: list[OrderItemIn]
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_address1: str | None = None
    customer_address2: str | None = None
    customer_memo: str | None = None
    payment_method: PaymentMethod | None = None
    idempotency_key: str | None = None

    def to_domain(self, header_key: str | None = None) -> CreateOrderRequest:
        return CreateOrderRequest(
            branch_id=self.branch_id,
            items=tuple(
                OrderLineRequest(item.product_id, item.qty, tuple(item.options))
                for item in self.items
            ),
            customer_name=self.customer_name,
            customer_phone=self.customer_phone,
            customer_address1=self.customer_address1,
            customer_address2=self.customer_address2,
            customer_memo=self.customer_memo,
            payment_method=self.payment_method,
            idempotency_key=self.idempotency_key or header_key,
        )


class OrderItemOut(CamelModel):
    product_name: str
    qty: int
    unit_price: int
    options: list[str]


class OrderOut(CamelModel):
    id: str
    order_no: str
    status: str
    payment_status: str
    total_amount: int
    created_at: datetime
    items: list[OrderItemOut]

    @classmethod
    def from_domain(cls, receipt: OrderReceipt) -> OrderOut:
        return cls(
            id=receipt.id,
            order_no=receipt.order_no,
            status=str(receipt.status),
            payment_status=str(receipt.payment_status),
            total_amount=receipt.total_amount,
            created_at=receipt.created_at,
            items=[
                OrderItemOut(
                    product_name=line.product_name,
                    qty=line.qty,
                    unit_price=line.unit_price,
                    options=list(line.options),
                )
                for line in receipt.items
            ],
        )


class PrepareIn(CamelModel):
    order_id: str
    amount: int

    def to_domain(self) -> PreparePaymentRequest:
        return PreparePaymentRequest(order_ref=self.order_id, amount=self.amount)


class PreparedOut(CamelModel):
    order_id: str
    order_no: str
    amount: int
    order_name: str
    customer_name: str
    customer_phone: str

    @classmethod
    def from_domain(cls, prepared: PreparedPayment) -> PreparedOut:
        return cls(
            order_id=prepared.order_id,
            order_no=prepared.order_no,
            amount=prepared.amount,
            order_name=prepared.order_name,
            customer_name=prepared.customer_name,
            customer_phone=prepared.customer_phone,
        )


class ConfirmIn(CamelModel):
    order_id: str
    payment_key: str
    amount: int
    idempotency_key: str | None = None

    def to_domain(self, header_key: str | None = None) -> ConfirmPaymentRequest:
        return ConfirmPaymentRequest(
            order_ref=self.order_id,
            payment_key=self.payment_key,
            amount=self.amount,
            idempotency_key=self.idempotency_key or header_key,
        )


class ConfirmedOut(CamelModel):
    payment_id: str
    order_id: str
    status: PaymentStatus
    amount: int
    paid_at: datetime | None

    @classmethod
    def from_domain(cls, confirmed: ConfirmedPayment) -> ConfirmedOut:
        return cls(
            payment_id=confirmed.payment_id,
            order_id=confirmed.order_id,
            status=confirmed.status,
            amount=confirmed.amount,
            paid_at=confirmed.paid_at,
        )


class PaymentStatusOut(CamelModel):
    id: str
    order_id: str
    status: PaymentStatus
    amount: int
    paid_at: datetime | None = None
    failure_reason: str | None = None

    @classmethod
    def from_domain(cls, view: PaymentStatusView) -> PaymentStatusOut:
        return cls(
            id=view.id,
            order_id=view.order_id,
            status=view.status,
            amount=view.amount,
            paid_at=view.paid_at,
            failure_reason=view.failure_reason,
        )


class PaymentOut(CamelModel):
    id: str
    order_id: str
    order_no: str | None = None
    amount: int
    currency: str
    provider: str
    status: PaymentStatus
    payment_method: str
    provider_payment_id: str | None = None
    provider_payment_key: str | None = None
    refund_amount: int = 0
    failure_reason: str | None = None
    cancellation_reason: str | None = None
    refund_reason: str | None = None
    paid_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None
    refunded_at: datetime | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_domain(cls, payment: PaymentRecord) -> PaymentOut:
        return cls(
            id=payment.id,
            order_id=payment.order_id,
            order_no=payment.order_no,
            amount=payment.amount,
            currency=payment.currency,
            provider=payment.provider,
            status=payment.status,
            payment_method=payment.payment_method,
            provider_payment_id=payment.provider_payment_id,
            provider_payment_key=payment.provider_payment_key,
            refund_amount=payment.refund_amount,
            failure_reason=payment.failure_reason,
            cancellation_reason=payment.cancel_reason,
            refund_reason=payment.refund_reason,
            paid_at=payment.paid_at,
            failed_at=payment.failed_at,
            cancelled_at=payment.cancelled_at,
            refunded_at=payment.refunded_at,
            metadata=dict(payment.metadata) if payment.metadata is not None else None,
            created_at=payment.created_at,
            updated_at=payment.updated_at,
        )


class PaymentPageOut(CamelModel):
    items: list[PaymentOut]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def from_domain(cls, page: PaymentPage) -> PaymentPageOut:
        return cls(
            items=[PaymentOut.from_domain(p) for p in page.items],
            total=page.total,
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
        )


class RefundIn(CamelModel):
    amount: int | None = None
    reason: str | None = None
    branch_id: str | None = None

    def to_domain(self) -> RefundRequest:
        return RefundRequest(amount=self.amount, reason=self.reason, branch_id=self.branch_id)


class RefundOut(CamelModel):
    payment_id: str
    status: PaymentStatus
    refunded: int
    refund_amount: int
    refunded_at: datetime

    @classmethod
    def from_domain(cls, result: RefundResult) -> RefundOut:
        return cls(
            payment_id=result.payment_id,
            status=result.status,
            refunded=result.refunded,
            refund_amount=result.refund_amount,
            refunded_at=result.refunded_at,
        )


class WebhookOut(CamelModel):
    received: bool = True
    outcome: WebhookOutcome


# ═══════════════════════════════════════════════════════════════════════════════
# Result → Response
# ═══════════════════════════════════════════════════════════════════════════════


def error_response(error: AppError) -> JSONResponse:
    return JSONResponse(status_code=error.status, content=error.to_payload())


def respond[T](result: Result[T, AppError], render: Callable[[T], Any]) -> Any:
    match result:
        case Ok(value):
            return render(value)
        case Error(e):
            return error_response(e)


def get_services(request: Request) -> Services:
    return request.app.state.services


ServicesDep = Annotated[Services, Depends(get_services)]
IdempotencyHeader = Annotated[str | None, Header(alias="Idempotency-Key")]

# ═══════════════════════════════════════════════════════════════════════════════
# Application
# ═══════════════════════════════════════════════════════════════════════════════


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "services", None) is not None:
        yield
        return

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    session_factory, engine = await create_database(settings.database_url)
    app.state.services = build_services(settings, session_factory)
    logger.info("app.started", env=settings.app_env, mock_mode=settings.mock_mode)
    try:
        yield
    finally:
        await engine.dispose()


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI(title="ordergate", lifespan=_lifespan)
    if services is not None:
        app.state.services = services

    @app.middleware("http")
    async def request_context(request: Request, call_next: Any) -> Any:
        clear_request()
        bind_request(
            request_id=request.headers.get("x-request-id") or uuid.uuid4().hex,
            method=request.method,
            path=request.url.path,
        )
        try:
            return await call_next(request)
        finally:
            clear_request()

    # ─── Orders ───────────────────────────────────────────────────────────────

    @app.post("/public/orders", response_model=OrderOut, status_code=201)
    async def create_order(
        body: CreateOrderIn,
        services: ServicesDep,
        idempotency_key: IdempotencyHeader = None,
    ) -> Any:
        result = await services.orders.create_order(body.to_domain(idempotency_key))
        return respond(result, OrderOut.from_domain)

    @app.get("/public/orders/{order_ref}", response_model=OrderOut)
    async def get_order(
        order_ref: str,
        services: ServicesDep,
        branch_id: Annotated[str | None, Query(alias="branchId")] = None,
    ) -> Any:
        return respond(await services.orders.get_order(order_ref, branch_id), OrderOut.from_domain)

    # ─── Payments ─────────────────────────────────────────────────────────────

    @app.post("/payments/prepare", response_model=PreparedOut)
    async def prepare_payment(body: PrepareIn, services: ServicesDep) -> Any:
        return respond(await services.payments.prepare(body.to_domain()), PreparedOut.from_domain)

    @app.post("/payments/confirm", response_model=ConfirmedOut)
    async def confirm_payment(
        body: ConfirmIn,
        services: ServicesDep,
        idempotency_key: IdempotencyHeader = None,
    ) -> Any:
        result = await services.payments.confirm(body.to_domain(idempotency_key))
        return respond(result, ConfirmedOut.from_domain)

    @app.get("/payments/status/{order_ref}", response_model=PaymentStatusOut)
    async def payment_status(order_ref: str, services: ServicesDep) -> Any:
        return respond(await services.queries.status(order_ref), PaymentStatusOut.from_domain)

    @app.get("/payments/{payment_id}", response_model=PaymentOut)
    async def payment_detail(
        payment_id: str,
        services: ServicesDep,
        branch_id: Annotated[str | None, Query(alias="branchId")] = None,
    ) -> Any:
        return respond(await services.queries.detail(payment_id, branch_id), PaymentOut.from_domain)

    @app.get("/branches/{branch_id}/payments", response_model=PaymentPageOut)
    async def branch_payments(
        branch_id: str,
        services: ServicesDep,
        page: Annotated[int, Query(ge=1)] = 1,
        limit: Annotated[int, Query(ge=1, le=100)] = 20,
    ) -> Any:
        result = await services.queries.list_for_branch(branch_id, page, limit)
        return respond(result, PaymentPageOut.from_domain)

    @app.post("/payments/{payment_id}/refund", response_model=RefundOut)
    async def refund_payment(payment_id: str, body: RefundIn, services: ServicesDep) -> Any:
        return respond(await services.refunds.refund(payment_id, body.to_domain()), RefundOut.from_domain)

    @app.post("/payments/webhooks/toss", response_model=WebhookOut)
    async def toss_webhook(request: Request, services: ServicesDep) -> Any:
        body = await request.body()
        result = await services.webhooks.handle(body, dict(request.headers))
        return respond(result, lambda outcome: WebhookOut(outcome=outcome))

    return app


__all__ = ("create_app", "respond", "error_response")
