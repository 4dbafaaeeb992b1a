"""Tests for the saga coordinator: ordering, stop-on-failure, compensation."""

import asyncio

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from src.identity.services.saga import SagaCoordinator
from tests.helpers import FakeEngine, log_events

pytestmark = pytest.mark.unit


class StepFailed(Exception):
    pass


def build_saga(
    calls: list[str],
    count: int,
    fail_at: int | None = None,
    compensable_last: bool = False,
    deadline: float | None = None,
) -> tuple[SagaCoordinator, list[FakeEngine]]:
    """Saga of ``count`` steps recording into ``calls``; step ``fail_at`` (1-based) raises."""
    saga = SagaCoordinator("test", deadline=deadline)
    engines = [FakeEngine(f"shard{i}") for i in range(1, count + 1)]

    for i, engine in enumerate(engines, start=1):

        async def do(conn, i=i):
            calls.append(f"do{i}")
            if i == fail_at:
                raise StepFailed(f"step {i}")

        async def undo(conn, i=i):
            calls.append(f"undo{i}")

        is_last = i == count
        saga.prepare(engine, do, undo if (compensable_last or not is_last) else None)

    return saga, engines


class TestCommit:
    async def test_runs_steps_in_order(self):
        calls: list[str] = []
        saga, engines = build_saga(calls, 3)

        await saga.commit()

        assert calls == ["do1", "do2", "do3"]
        assert saga.completed_steps == [0, 1, 2]
        assert [e.commits for e in engines] == [1, 1, 1]

    async def test_stops_at_first_failure(self):
        calls: list[str] = []
        saga, engines = build_saga(calls, 4, fail_at=2)

        with pytest.raises(StepFailed):
            await saga.commit()

        assert calls == ["do1", "do2"]
        assert saga.completed_steps == [0]
        # failed step's local transaction rolled back, later steps untouched
        assert engines[1].rollbacks == 1
        assert engines[2].commits == 0 and engines[2].rollbacks == 0

    async def test_expired_deadline_runs_nothing(self):
        calls: list[str] = []
        deadline = asyncio.get_running_loop().time() - 1
        saga, _ = build_saga(calls, 2, deadline=deadline)

        with pytest.raises(TimeoutError):
            await saga.commit()

        assert calls == []
        assert saga.completed_steps == []

    async def test_deadline_checked_before_each_step(self):
        calls: list[str] = []
        loop = asyncio.get_running_loop()
        saga = SagaCoordinator("test", deadline=loop.time() + 60)

        async def first(conn):
            calls.append("do1")
            saga.deadline = loop.time() - 1  # expires while step 1 runs

        async def second(conn):
            calls.append("do2")

        async def undo_first(conn):
            calls.append("undo1")

        saga.prepare(FakeEngine(), first, undo_first)
        saga.prepare(FakeEngine(), second)

        with pytest.raises(TimeoutError):
            await saga.commit()
        await saga.rollback()

        assert calls == ["do1", "undo1"]

    async def test_cancellation_leaves_done_steps_for_rollback(self):
        calls: list[str] = []
        started = asyncio.Event()
        saga = SagaCoordinator("test")

        async def first(conn):
            calls.append("do1")

        async def undo_first(conn):
            calls.append("undo1")

        async def blocking(conn):
            started.set()
            await asyncio.sleep(30)

        saga.prepare(FakeEngine(), first, undo_first)
        saga.prepare(FakeEngine(), blocking)

        task = asyncio.create_task(saga.commit())
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert saga.completed_steps == [0]
        await saga.rollback()
        assert calls == ["do1", "undo1"]


class TestPrepare:
    def test_only_last_step_may_omit_compensation(self):
        saga = SagaCoordinator("test")

        async def noop(conn):
            return None

        saga.prepare(FakeEngine(), noop, noop)
        saga.prepare(FakeEngine(), noop)

        with pytest.raises(ValueError, match="only the last step"):
            saga.prepare(FakeEngine(), noop, noop)


class TestRollback:
    async def test_compensates_done_steps_in_reverse(self):
        calls: list[str] = []
        saga, _ = build_saga(calls, 4, fail_at=4)

        with pytest.raises(StepFailed):
            await saga.commit()
        errors = await saga.rollback()

        assert errors == []
        assert calls == ["do1", "do2", "do3", "do4", "undo3", "undo2", "undo1"]

    async def test_skips_steps_without_compensation(self):
        calls: list[str] = []
        saga, _ = build_saga(calls, 2)

        await saga.commit()
        await saga.rollback()

        assert calls == ["do1", "do2", "undo1"]

    async def test_rollback_is_not_repeated(self):
        calls: list[str] = []
        saga, _ = build_saga(calls, 3, fail_at=3)

        with pytest.raises(StepFailed):
            await saga.commit()
        await saga.rollback()
        await saga.rollback()

        assert calls.count("undo1") == 1
        assert calls.count("undo2") == 1

    async def test_compensation_failure_is_collected_and_logged(self, capturing_logger):
        calls: list[str] = []
        saga = SagaCoordinator("test")

        async def do(conn):
            calls.append("do")

        async def broken_undo(conn):
            raise RuntimeError("shard down")

        async def undo(conn):
            calls.append("undo")

        async def fail(conn):
            raise StepFailed("final")

        saga.prepare(FakeEngine(), do, undo)
        saga.prepare(FakeEngine(), do, broken_undo)
        saga.prepare(FakeEngine(), fail)

        with pytest.raises(StepFailed):
            await saga.commit()
        errors = await saga.rollback()

        # the remaining compensation still ran
        assert calls == ["do", "do", "undo"]
        assert len(errors) == 1
        assert isinstance(errors[0], RuntimeError)

        failures = log_events(capturing_logger, "error")
        assert failures[0]["event"] == "Saga compensation failed"
        assert failures[0]["step"] == 1
        assert failures[0]["error"] == "shard down"


@given(data=st.data())
@settings(max_examples=60, deadline=None)
def test_failure_at_step_k_compensates_prefix_in_reverse(data):
    """If step k of n fails, undo(k-1..1) each run once, in reverse; nothing after k runs."""
    count = data.draw(st.integers(min_value=1, max_value=8), label="count")
    fail_at = data.draw(st.integers(min_value=1, max_value=count), label="fail_at")

    async def scenario() -> list[str]:
        calls: list[str] = []
        saga, _ = build_saga(calls, count, fail_at=fail_at, compensable_last=True)
        with pytest.raises(StepFailed):
            await saga.commit()
        await saga.rollback()
        return calls

    calls = asyncio.run(scenario())

    expected_do = [f"do{i}" for i in range(1, fail_at + 1)]
    expected_undo = [f"undo{i}" for i in range(fail_at - 1, 0, -1)]
    assert calls == expected_do + expected_undo
