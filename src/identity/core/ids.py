"""Shard-aware 64-bit user ids.

Layout (most to least significant):

    41 bits  milliseconds since EPOCH_MS
     2 bits  worker id
    10 bits  database (shard) number
    10 bits  sequence within the millisecond
"""

import threading
import time
from dataclasses import dataclass

EPOCH_MS = 1_704_067_200_000  # 2024-01-01T00:00:00Z

TIME_BITS = 41
WORKER_BITS = 2
DATABASE_BITS = 10
SEQUENCE_BITS = 10

MAX_WORKER = (1 << WORKER_BITS) - 1
MAX_DATABASE = (1 << DATABASE_BITS) - 1
MAX_SEQUENCE = (1 << SEQUENCE_BITS) - 1

DATABASE_SHIFT = SEQUENCE_BITS
WORKER_SHIFT = SEQUENCE_BITS + DATABASE_BITS
TIME_SHIFT = SEQUENCE_BITS + DATABASE_BITS + WORKER_BITS


@dataclass(frozen=True)
class ShardID:
    """A decoded user id."""

    value: int
    timestamp: int  # unix milliseconds
    worker: int
    database: int
    sequence: int

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        return str(self.value)


def build_id(timestamp: int, worker: int, database: int, sequence: int) -> ShardID:
    value = (
        ((timestamp - EPOCH_MS) << TIME_SHIFT)
        | (worker << WORKER_SHIFT)
        | (database << DATABASE_SHIFT)
        | sequence
    )
    return ShardID(
        value=value,
        timestamp=timestamp,
        worker=worker,
        database=database,
        sequence=sequence,
    )


def parse_id(raw: int | str | ShardID) -> ShardID:
    """Decode any id issued by ``IdGenerator``."""
    if isinstance(raw, ShardID):
        return raw
    value = int(raw)
    if value < 0:
        raise ValueError(f"Invalid shard id {raw!r}")
    return ShardID(
        value=value,
        timestamp=(value >> TIME_SHIFT) + EPOCH_MS,
        worker=(value >> WORKER_SHIFT) & MAX_WORKER,
        database=(value >> DATABASE_SHIFT) & MAX_DATABASE,
        sequence=value & MAX_SEQUENCE,
    )


class IdGenerator:
    """Issues unique ids, spreading new users round-robin over the shards."""

    def __init__(self, database_count: int, worker_id: int = 0):
        if not 1 <= database_count <= MAX_DATABASE + 1:
            raise ValueError(f"database_count must be between 1 and {MAX_DATABASE + 1}")
        if not 0 <= worker_id <= MAX_WORKER:
            raise ValueError(f"worker_id must be between 0 and {MAX_WORKER}")
        self.database_count = database_count
        self.worker_id = worker_id
        self._lock = threading.Lock()
        self._last_ms = -1
        self._sequence = 0
        self._next_database = 0

    def next(self) -> ShardID:
        with self._lock:
            # Never step backwards if the wall clock does
            now = max(self._now_ms(), self._last_ms)
            if now == self._last_ms:
                self._sequence = (self._sequence + 1) & MAX_SEQUENCE
                if self._sequence == 0:
                    # Sequence exhausted for this millisecond
                    while now <= self._last_ms:
                        now = self._now_ms()
            else:
                self._sequence = 0
            self._last_ms = now

            database = self._next_database
            self._next_database = (self._next_database + 1) % self.database_count

            return build_id(now, self.worker_id, database, self._sequence)

    def parse(self, raw: int | str | ShardID) -> ShardID:
        return parse_id(raw)

    @staticmethod
    def _now_ms() -> int:
        return time.time_ns() // 1_000_000
