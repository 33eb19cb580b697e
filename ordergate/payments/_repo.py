"""
Payment repository — payments rows and the webhook audit log.

Status changes go through transition(), an UPDATE guarded on the current
status (and optionally on refund_amount), so concurrent confirm, webhook
and refund paths can only move a row forward once.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

import structlog
from kungfu import Result, Ok, Error
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ordergate._types import Clock, utcnow
from ordergate.db import OrderTable, PaymentTable, WebhookLogTable, is_unique_violation
from ordergate.errors import AppError, AppErrors
from ordergate.payments._types import NewPayment, PaymentPage, PaymentRecord, PaymentStatus

logger = structlog.get_logger(__name__)


def _to_record(row: PaymentTable, order_no: str | None = None) -> PaymentRecord:
    return PaymentRecord(
        id=row.id,
        order_id=row.order_id,
        amount=row.amount,
        currency=row.currency,
        provider=row.provider,
        payment_method=row.payment_method,
        status=PaymentStatus(row.status),
        refund_amount=row.refund_amount,
        provider_payment_id=row.provider_payment_id,
        provider_payment_key=row.provider_payment_key,
        idempotency_key=row.idempotency_key,
        failure_reason=row.failure_reason,
        cancel_reason=row.cancel_reason,
        refund_reason=row.refund_reason,
        paid_at=row.paid_at,
        failed_at=row.failed_at,
        cancelled_at=row.cancelled_at,
        refunded_at=row.refunded_at,
        metadata=row.provider_metadata,
        created_at=row.created_at,
        updated_at=row.updated_at,
        order_no=order_no,
    )


class PaymentRepository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ) -> None:
        self._session = session_factory
        self._clock = clock

    # ─── Lookups ──────────────────────────────────────────────────────────────

    async def _one(self, operation: str, *criteria: Any) -> Result[PaymentRecord | None, AppError]:
        stmt = (
            select(PaymentTable, OrderTable.order_no)
            .join(OrderTable, OrderTable.id == PaymentTable.order_id)
            .where(*criteria)
            .limit(1)
        )
        try:
            async with self._session() as session:
                found = (await session.execute(stmt)).first()
        except SQLAlchemyError as e:
            return Error(AppErrors.storage(operation, e))

        if found is None:
            return Ok(None)
        row, order_no = found
        return Ok(_to_record(row, order_no))

    async def find(
        self,
        payment_id: str,
        branch_id: str | None = None,
    ) -> Result[PaymentRecord | None, AppError]:
        criteria = [PaymentTable.id == payment_id]
        if branch_id is not None:
            criteria.append(OrderTable.branch_id == branch_id)
        return await self._one("load payment", *criteria)

    async def find_by_order(self, order_id: str) -> Result[PaymentRecord | None, AppError]:
        return await self._one("load payment by order", PaymentTable.order_id == order_id)

    async def find_by_idempotency_key(self, key: str) -> Result[PaymentRecord | None, AppError]:
        return await self._one(
            "load payment by idempotency key", PaymentTable.idempotency_key == key
        )

    async def find_by_payment_key(self, payment_key: str) -> Result[PaymentRecord | None, AppError]:
        return await self._one(
            "load payment by provider key", PaymentTable.provider_payment_key == payment_key
        )

    async def list_for_branch(
        self,
        branch_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> Result[PaymentPage, AppError]:
        """Newest first, paginated; page is 1-based."""
        page = max(page, 1)
        limit = max(limit, 1)
        scoped = OrderTable.branch_id == branch_id
        try:
            async with self._session() as session:
                total = (
                    await session.execute(
                        select(func.count(PaymentTable.id))
                        .join(OrderTable, OrderTable.id == PaymentTable.order_id)
                        .where(scoped)
                    )
                ).scalar_one()
                rows = (
                    await session.execute(
                        select(PaymentTable, OrderTable.order_no)
                        .join(OrderTable, OrderTable.id == PaymentTable.order_id)
                        .where(scoped)
                        .order_by(PaymentTable.created_at.desc())
                        .offset((page - 1) * limit)
                        .limit(limit)
                    )
                ).all()
        except SQLAlchemyError as e:
            return Error(AppErrors.storage("list payments", e))

        return Ok(PaymentPage(
            items=tuple(_to_record(row, order_no) for row, order_no in rows),
            total=total,
            page=page,
            limit=limit,
        ))

    # ─── Writes ───────────────────────────────────────────────────────────────

    async def insert(self, payment: NewPayment) -> Result[PaymentRecord, AppError]:
        """
        Insert a payments row.

        A unique violation (order_id or idempotency_key) comes back as
        DUPLICATE_RESOURCE so callers can re-read and converge.
        """
        now = self._clock()
        row = PaymentTable(
            order_id=payment.order_id,
            amount=payment.amount,
            currency=payment.currency,
            provider=payment.provider,
            payment_method=payment.payment_method,
            provider_payment_id=payment.provider_payment_id,
            provider_payment_key=payment.provider_payment_key,
            idempotency_key=payment.idempotency_key,
            status=str(payment.status),
            refund_amount=0,
            failure_reason=payment.failure_reason,
            cancel_reason=payment.cancel_reason,
            paid_at=payment.paid_at,
            failed_at=payment.failed_at,
            cancelled_at=payment.cancelled_at,
            provider_metadata=dict(payment.metadata) if payment.metadata is not None else None,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            if is_unique_violation(e):
                return Error(AppErrors.duplicate_resource(
                    "Payment already exists",
                    order_id=payment.order_id,
                    idempotency_key=payment.idempotency_key,
                ))
            return Error(AppErrors.storage("insert payment", e))

        return Ok(_to_record(row))

    async def transition(
        self,
        payment_id: str,
        *,
        allowed_from: Iterable[PaymentStatus],
        values: Mapping[str, Any],
        expected_refund_amount: int | None = None,
    ) -> Result[PaymentRecord | None, AppError]:
        """
        Guarded UPDATE of a payments row.

        values are PaymentTable attribute names. Returns the updated record,
        or Ok(None) when the guard did not match (someone else won).
        """
        stmt = update(PaymentTable).where(
            PaymentTable.id == payment_id,
            PaymentTable.status.in_([str(s) for s in allowed_from]),
        )
        if expected_refund_amount is not None:
            stmt = stmt.where(PaymentTable.refund_amount == expected_refund_amount)

        changes = {
            key: str(value) if isinstance(value, PaymentStatus) else value
            for key, value in values.items()
        }
        changes["updated_at"] = self._clock()

        try:
            async with self._session() as session:
                cursor = await session.execute(
                    stmt.values(**changes).execution_options(synchronize_session=False)
                )
                await session.commit()
        except SQLAlchemyError as e:
            return Error(AppErrors.storage("update payment", e))

        if cursor.rowcount == 0:
            return Ok(None)
        return await self.find(payment_id)

    # ─── Webhook Audit ────────────────────────────────────────────────────────

    async def log_webhook(
        self,
        *,
        provider: str,
        event_type: str | None,
        body: Any,
        headers: Mapping[str, Any],
        payment_id: str | None = None,
        error_message: str | None = None,
    ) -> str | None:
        """Append a payment_webhook_logs row; returns its id, None if the write failed."""
        row = WebhookLogTable(
            payment_id=payment_id,
            provider=provider,
            event_type=event_type,
            request_body=body,
            request_headers=dict(headers),
            processed=False,
            error_message=error_message,
            created_at=self._clock(),
        )
        try:
            async with self._session() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning("webhook.audit_failed", event_type=event_type, error=str(e))
            return None
        return row.id

    async def mark_webhook(
        self,
        log_id: str | None,
        *,
        error_message: str | None = None,
        processed_at: datetime | None = None,
    ) -> None:
        """Mark processed, or annotate the error. Failures are logged only."""
        if log_id is None:
            return
        values: dict[str, Any] = {"error_message": error_message}
        if error_message is None:
            values.update(processed=True, processed_at=processed_at or self._clock())
        try:
            async with self._session() as session:
                await session.execute(
                    update(WebhookLogTable).where(WebhookLogTable.id == log_id).values(**values)
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning("webhook.audit_update_failed", log_id=log_id, error=str(e))


__all__ = ("PaymentRepository",)
