from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

import pytest
from kungfu import Error, LazyCoroResult, Ok
from sqlalchemy import func, select, update

from ordergate import lift as L
from ordergate.app import build_services
from ordergate.config import Settings
from ordergate.db import (
    OrderTable,
    ProductInventoryTable,
    ProductTable,
    create_database,
    new_id,
)
from ordergate.orders import CreateOrderRequest, OrderLineRequest
from ordergate.payments import ProviderFailure, ProviderPayment

BRANCH = "branch-1"
OTHER_BRANCH = "branch-2"


def ok(result):
    match result:
        case Ok(value):
            return value
        case Error(e):
            raise AssertionError(f"expected Ok, got {e}")


def err(result):
    match result:
        case Error(e):
            return e
        case Ok(value):
            raise AssertionError(f"expected Error, got {value}")


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProvider:
    """Records calls; answers success unless told to fail."""

    name = "TOSS"

    def __init__(self, mock_mode: bool = False) -> None:
        self.mock_mode = mock_mode
        self.confirm_calls: list[tuple[str, str, int]] = []
        self.cancel_calls: list[tuple[str, int, str]] = []
        self.fail_with: ProviderFailure | None = None

    def confirm(
        self, payment_key: str, order_id: str, amount: int
    ) -> LazyCoroResult[ProviderPayment, ProviderFailure]:
        self.confirm_calls.append((payment_key, order_id, amount))
        if self.fail_with is not None:
            return L.fail(self.fail_with)
        return L.pure(ProviderPayment(
            payment_id=f"prov_{len(self.confirm_calls)}",
            raw={"paymentKey": payment_key, "status": "DONE"},
        ))

    def cancel(
        self, payment_key: str, amount: int, reason: str
    ) -> LazyCoroResult[Mapping[str, Any], ProviderFailure]:
        self.cancel_calls.append((payment_key, amount, reason))
        if self.fail_with is not None:
            return L.fail(self.fail_with)
        return L.pure({"status": "CANCELED"})


class Store:
    """Seeding and row inspection against the test database."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def product(
        self,
        *,
        branch_id: str = BRANCH,
        name: str = "Americano",
        price: int = 1000,
        stock: int | None = 100,
        hidden: bool = False,
        sold_out: bool = False,
    ) -> str:
        product_id = new_id()
        async with self.session_factory() as session:
            session.add(ProductTable(
                id=product_id,
                branch_id=branch_id,
                name=name,
                base_price=price,
                is_hidden=hidden,
                is_sold_out=sold_out,
            ))
            if stock is not None:
                session.add(ProductInventoryTable(
                    branch_id=branch_id,
                    product_id=product_id,
                    qty_available=stock,
                    qty_reserved=0,
                ))
            await session.commit()
        return product_id

    async def stock(self, product_id: str, branch_id: str = BRANCH) -> tuple[int, int]:
        async with self.session_factory() as session:
            row = (
                await session.execute(
                    select(ProductInventoryTable).where(
                        ProductInventoryTable.branch_id == branch_id,
                        ProductInventoryTable.product_id == product_id,
                    )
                )
            ).scalar_one()
            return row.qty_available, row.qty_reserved

    async def count(self, table, *criteria) -> int:
        async with self.session_factory() as session:
            return (
                await session.execute(select(func.count()).select_from(table).where(*criteria))
            ).scalar_one()

    async def rows(self, table, *criteria) -> list:
        async with self.session_factory() as session:
            return list((await session.execute(select(table).where(*criteria))).scalars().all())

    async def order(self, order_id: str) -> OrderTable:
        async with self.session_factory() as session:
            return await session.get(OrderTable, order_id)

    async def set_order(self, order_id: str, **values: Any) -> None:
        async with self.session_factory() as session:
            await session.execute(update(OrderTable).where(OrderTable.id == order_id).values(**values))
            await session.commit()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 2, 10, 12, 0, 0))


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        app_env="test",
        toss_secret_key=None,
        toss_mock_mode=False,
        toss_webhook_secret=None,
    )


@pytest.fixture
async def db(tmp_path):
    session_factory, engine = await create_database(
        f"sqlite+aiosqlite:///{tmp_path / 'ordergate.db'}"
    )
    yield session_factory
    await engine.dispose()


@pytest.fixture
def store(db):
    return Store(db)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def services(settings, db, provider, clock):
    return build_services(settings, db, provider=provider, clock=clock)


@pytest.fixture
def make_request():
    def _make(
        *items: tuple[str, int],
        branch_id: str = BRANCH,
        key: str | None = None,
        name: str | None = "Kim",
        phone: str | None = "010-1234-5678",
        address: str | None = None,
        **extra: Any,
    ) -> CreateOrderRequest:
        return CreateOrderRequest(
            branch_id=branch_id,
            items=tuple(OrderLineRequest(pid, qty) for pid, qty in items),
            customer_name=name,
            customer_phone=phone,
            customer_address1=address,
            idempotency_key=key,
            **extra,
        )

    return _make
