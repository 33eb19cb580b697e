import pytest
from kungfu import Error, Ok

from ordergate.db import InventoryLogTable
from ordergate.orders import (
    InventoryGate,
    InventoryReservationError,
    ReservationLine,
    SQLInventoryReserver,
    translate_reservation_error,
)

from conftest import BRANCH


class TestTranslate:
    @pytest.mark.parametrize(
        ("message", "code"),
        [
            ("INVENTORY_NOT_FOUND:p-1", "INVENTORY_NOT_FOUND"),
            ("INSUFFICIENT_INVENTORY:p-1", "INSUFFICIENT_INVENTORY"),
            ("rpc failed: INSUFFICIENT_INVENTORY:p-1 (qty 3)", "INSUFFICIENT_INVENTORY"),
        ],
    )
    def test_coded_messages(self, message, code):
        error = translate_reservation_error(InventoryReservationError(message))
        assert error.code == code
        assert error.details["product_id"] == "p-1"
        assert error.status == 400

    def test_anything_else_is_generic(self):
        error = translate_reservation_error(ConnectionError("reset by peer"))
        assert error.code == "INVENTORY_RESERVATION_FAILED"
        assert error.details == {"error": "reset by peer"}


class TestGate:
    async def test_success(self):
        seen = []

        class Recorder:
            async def reserve(self, branch_id, order_id, order_no, lines):
                seen.append((branch_id, order_id, order_no, list(lines)))

        gate = InventoryGate(Recorder())
        result = await gate.reserve("b", "o", "n", [ReservationLine("p", 2)])

        assert isinstance(result, Ok)
        assert seen == [("b", "o", "n", [ReservationLine("p", 2)])]

    async def test_lazy_until_awaited(self):
        calls = []

        class Recorder:
            async def reserve(self, *args):
                calls.append(args)

        InventoryGate(Recorder()).reserve("b", "o", "n", [])
        assert calls == []

    async def test_exception_becomes_error(self):
        class Failing:
            async def reserve(self, *args):
                raise InventoryReservationError("INSUFFICIENT_INVENTORY:p9")

        match await InventoryGate(Failing()).reserve("b", "o", "n", []):
            case Error(e):
                assert e.code == "INSUFFICIENT_INVENTORY"
                assert e.details["product_id"] == "p9"
            case Ok(_):
                raise AssertionError("reservation should fail")


class TestSQLReserver:
    async def test_moves_stock_and_logs(self, db, store, clock):
        p1 = await store.product(stock=10)
        reserver = SQLInventoryReserver(db, clock)

        await reserver.reserve(BRANCH, "order-1", "20260210-ABCDEF", [ReservationLine(p1, 4)])

        assert await store.stock(p1) == (6, 4)
        [log] = await store.rows(InventoryLogTable)
        assert log.transaction_type == "RESERVE"
        assert log.qty_change == -4
        assert log.qty_before == 10
        assert log.qty_after == 6
        assert log.reference_id == "order-1"
        assert log.reference_type == "ORDER"

    async def test_exact_stock_is_enough(self, db, store, clock):
        p1 = await store.product(stock=2)
        await SQLInventoryReserver(db, clock).reserve(BRANCH, "o", "n", [ReservationLine(p1, 2)])
        assert await store.stock(p1) == (0, 2)

    async def test_all_or_nothing(self, db, store, clock):
        p1 = await store.product(stock=10)
        p2 = await store.product(name="Tea", stock=1)
        reserver = SQLInventoryReserver(db, clock)

        with pytest.raises(InventoryReservationError, match=f"INSUFFICIENT_INVENTORY:{p2}"):
            await reserver.reserve(
                BRANCH, "o", "n", [ReservationLine(p1, 3), ReservationLine(p2, 2)]
            )

        assert await store.stock(p1) == (10, 0)
        assert await store.stock(p2) == (1, 0)
        assert await store.count(InventoryLogTable) == 0

    async def test_wrong_branch_has_no_inventory(self, db, store, clock):
        p1 = await store.product(stock=10)

        with pytest.raises(InventoryReservationError, match="INVENTORY_NOT_FOUND"):
            await SQLInventoryReserver(db, clock).reserve(
                "elsewhere", "o", "n", [ReservationLine(p1, 1)]
            )
