"""
Composition root — wire repositories, provider and services.

    settings = get_settings()
    session_factory, engine = await create_database(settings.database_url)
    services = build_services(settings, session_factory)

Collaborators are passed by constructor; tests swap the provider, the
inventory reserver and the clock here.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ordergate._types import Clock, utcnow
from ordergate.config import Settings
from ordergate.orders import (
    DedupWindows,
    IdempotencyKeyResolver,
    InventoryGate,
    InventoryReserver,
    OrderRepository,
    OrderService,
    RecentDuplicateScanner,
    SQLInventoryReserver,
)
from ordergate.payments import (
    PaymentConfirmationEngine,
    PaymentProvider,
    PaymentQueries,
    PaymentRepository,
    RefundLedger,
    TossPaymentsClient,
    WebhookReconciler,
)


@dataclass(frozen=True, slots=True)
class Services:
    settings: Settings
    orders: OrderService
    payments: PaymentConfirmationEngine
    webhooks: WebhookReconciler
    refunds: RefundLedger
    queries: PaymentQueries


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    provider: PaymentProvider | None = None,
    reserver: InventoryReserver | None = None,
    clock: Clock = utcnow,
) -> Services:
    order_repo = OrderRepository(session_factory, clock)
    payment_repo = PaymentRepository(session_factory, clock)
    provider = provider or TossPaymentsClient.from_settings(settings)
    reserver = reserver or SQLInventoryReserver(session_factory, clock)

    orders = OrderService(
        order_repo,
        IdempotencyKeyResolver(order_repo),
        RecentDuplicateScanner(order_repo, DedupWindows.from_settings(settings), clock),
        InventoryGate(reserver),
        clock,
    )

    return Services(
        settings=settings,
        orders=orders,
        payments=PaymentConfirmationEngine(order_repo, payment_repo, provider, clock),
        webhooks=WebhookReconciler(
            order_repo,
            payment_repo,
            secret=settings.toss_webhook_secret,
            signature_header=settings.toss_webhook_signature_header,
            clock=clock,
        ),
        refunds=RefundLedger(order_repo, payment_repo, provider, clock),
        queries=PaymentQueries(order_repo, payment_repo),
    )


__all__ = ("Services", "build_services")
