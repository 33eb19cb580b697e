from kungfu import Error, Ok

from ordergate import lift as L
from ordergate import saga as S


class TestRun:
    async def test_success_returns_last_value(self):
        saga = (
            S.step(L.pure(1), name="one")
            .then(lambda v: S.step(L.pure(v + 1), name="two"))
            .then(lambda v: S.step(L.pure(v * 10), name="three"))
        )

        match await S.run(saga):
            case Ok(done):
                assert done.value == 20
                assert done.steps_executed == 3
                assert done.compensators_recorded == 0
            case Error(e):
                raise AssertionError(e)

    async def test_failure_compensates_in_reverse(self):
        undone: list[str] = []

        async def undo(label):
            undone.append(label)

        saga = (
            S.step(L.pure("a"), compensate=undo, name="a")
            .then(lambda _: S.step(L.pure("b"), compensate=undo, name="b"))
            .then(lambda _: S.step(L.fail("boom"), compensate=undo, name="c"))
        )

        match await S.run(saga):
            case Error(failed):
                assert failed.error == "boom"
                assert failed.step_name == "c"
                assert failed.step_failed == 3
                assert failed.compensators_run == 2
                assert failed.rollback_complete
            case Ok(_):
                raise AssertionError("saga should fail")

        assert undone == ["b", "a"]

    async def test_later_steps_do_not_run_after_failure(self):
        ran: list[str] = []

        def second(_):
            ran.append("second")
            return S.step(L.pure(None), name="second")

        saga = S.step(L.fail("nope"), name="first").then(second)

        result = await S.run(saga)
        assert isinstance(result, Error)
        assert ran == []

    async def test_failing_compensator_does_not_stop_rollback(self):
        undone: list[str] = []

        async def broken(_):
            raise RuntimeError("db gone")

        async def undo(label):
            undone.append(label)

        saga = (
            S.step(L.pure("a"), compensate=undo, name="a")
            .then(lambda _: S.step(L.pure("b"), compensate=broken, name="b"))
            .then(lambda _: S.step(L.fail("boom"), name="c"))
        )

        match await S.run(saga):
            case Error(failed):
                assert failed.compensators_run == 1
                assert failed.compensators_failed == 1
                assert not failed.rollback_complete
            case Ok(_):
                raise AssertionError("saga should fail")

        assert undone == ["a"]

    async def test_compensator_receives_step_value(self):
        seen: list[dict] = []

        async def undo(value):
            seen.append(value)

        saga = S.step(L.pure({"id": "o1"}), compensate=undo).then(
            lambda _: S.step(L.fail("x"))
        )
        await S.run(saga)

        assert seen == [{"id": "o1"}]
