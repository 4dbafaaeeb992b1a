"""Tests for shard-aware id generation."""

import threading

import pytest
from hypothesis import given
from hypothesis import strategies as st

from src.identity.core.ids import (
    EPOCH_MS,
    MAX_DATABASE,
    MAX_SEQUENCE,
    MAX_WORKER,
    IdGenerator,
    build_id,
    parse_id,
)

pytestmark = pytest.mark.unit


@given(
    offset=st.integers(min_value=0, max_value=(1 << 41) - 1),
    worker=st.integers(min_value=0, max_value=MAX_WORKER),
    database=st.integers(min_value=0, max_value=MAX_DATABASE),
    sequence=st.integers(min_value=0, max_value=MAX_SEQUENCE),
)
def test_parse_recovers_every_field(offset, worker, database, sequence):
    built = build_id(EPOCH_MS + offset, worker, database, sequence)
    parsed = parse_id(built.value)

    assert parsed == built
    assert parsed.value < 1 << 63


def test_parse_accepts_strings_and_ids():
    sid = build_id(EPOCH_MS + 1000, 1, 2, 3)
    assert parse_id(str(sid.value)) == sid
    assert parse_id(sid) is sid
    assert int(sid) == sid.value
    assert str(sid) == str(sid.value)


def test_parse_rejects_negative():
    with pytest.raises(ValueError):
        parse_id(-1)


class TestIdGenerator:
    def test_ids_are_unique_and_increasing(self):
        gen = IdGenerator(database_count=1)
        ids = [gen.next().value for _ in range(5000)]
        assert len(set(ids)) == len(ids)
        assert ids == sorted(ids)

    def test_databases_assigned_round_robin(self):
        gen = IdGenerator(database_count=3)
        assert [gen.next().database for _ in range(6)] == [0, 1, 2, 0, 1, 2]

    def test_worker_encoded(self):
        gen = IdGenerator(database_count=2, worker_id=3)
        sid = gen.next()
        assert sid.worker == 3
        assert gen.parse(sid.value).worker == 3

    def test_unique_across_threads(self):
        gen = IdGenerator(database_count=4)
        results: list[int] = []
        lock = threading.Lock()

        def worker():
            local = [gen.next().value for _ in range(1000)]
            with lock:
                results.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(results)) == 4000

    def test_clock_going_backwards_does_not_repeat(self, monkeypatch):
        gen = IdGenerator(database_count=1)
        now = [EPOCH_MS + 10_000]
        monkeypatch.setattr(gen, "_now_ms", lambda: now[0])

        first = gen.next()
        now[0] -= 500
        second = gen.next()

        assert second.value > first.value

    @pytest.mark.parametrize("count", [0, MAX_DATABASE + 2])
    def test_rejects_bad_database_count(self, count):
        with pytest.raises(ValueError, match="database_count"):
            IdGenerator(database_count=count)

    def test_rejects_bad_worker(self):
        with pytest.raises(ValueError, match="worker_id"):
            IdGenerator(database_count=1, worker_id=MAX_WORKER + 1)
