"""
Payment queries — status by order, detail by id, per-branch listing.
"""

from __future__ import annotations

from kungfu import Result, Ok, Error

from ordergate.errors import AppError, AppErrors
from ordergate.orders import OrderRepository
from ordergate.payments._repo import PaymentRepository
from ordergate.payments._types import PaymentPage, PaymentRecord, PaymentStatusView

MAX_PAGE_SIZE = 100


class PaymentQueries:
    def __init__(self, orders: OrderRepository, payments: PaymentRepository) -> None:
        self._orders = orders
        self._payments = payments

    async def status(self, order_ref: str) -> Result[PaymentStatusView, AppError]:
        match await self._orders.resolve_order_id(order_ref):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(AppErrors.order_not_found(order_ref))
            case Ok(order_id):
                pass

        match await self._payments.find_by_order(order_id):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(AppErrors.payment_not_found(order_ref))
            case Ok(payment):
                return Ok(PaymentStatusView(
                    id=payment.id,
                    order_id=payment.order_id,
                    status=payment.status,
                    amount=payment.amount,
                    paid_at=payment.paid_at,
                    failure_reason=payment.failure_reason,
                ))

    async def detail(
        self,
        payment_id: str,
        branch_id: str | None = None,
    ) -> Result[PaymentRecord, AppError]:
        match await self._payments.find(payment_id, branch_id):
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(AppErrors.payment_not_found(payment_id))
            case Ok(payment):
                return Ok(payment)

    async def list_for_branch(
        self,
        branch_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> Result[PaymentPage, AppError]:
        return await self._payments.list_for_branch(branch_id, page, min(limit, MAX_PAGE_SIZE))


__all__ = ("PaymentQueries", "MAX_PAGE_SIZE")
