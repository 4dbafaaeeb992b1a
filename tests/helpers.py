"""Test helper functions for common setup patterns."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import func, select

from src.identity.core.config import Settings

TEST_JWT_SECRET = "test-secret-key-that-is-at-least-32-characters-long"


def shard_urls(directory: Path, count: int = 3) -> list[str]:
    """SQLite shard database URLs inside ``directory``."""
    return [f"sqlite+aiosqlite:///{directory / f'shard{i}.db'}" for i in range(count)]


def make_settings(**overrides: Any) -> Settings:
    """Build Settings without reading the environment's shard list or secret."""
    values: dict[str, Any] = {
        "shard_urls": ["sqlite+aiosqlite:///:memory:"],
        "jwt_secret_key": TEST_JWT_SECRET,
    }
    values.update(overrides)
    return Settings(**values)


def log_events(cap_logger, level: str | None = None) -> list[dict[str, Any]]:
    """Captured log calls as dicts holding the event, its level and bound keys."""
    return [
        {"level": call.method_name, **call.kwargs}
        for call in cap_logger.calls
        if level is None or call.method_name == level
    ]


class FakeEngine:
    """Stand-in for AsyncEngine: records commits and rollbacks of ``begin()``."""

    def __init__(self, name: str = "shard"):
        self.name = name
        self.commits = 0
        self.rollbacks = 0

    @asynccontextmanager
    async def begin(self):
        try:
            yield self
        except BaseException:
            self.rollbacks += 1
            raise
        else:
            self.commits += 1


async def count_rows(engine, table) -> int:
    """Number of rows in ``table`` on one shard."""
    async with engine.connect() as conn:
        return (await conn.execute(select(func.count()).select_from(table))).scalar_one()


async def count_rows_everywhere(core, table) -> int:
    """Number of rows in ``table`` summed over every shard."""
    total = 0
    for engine in core.engines:
        total += await count_rows(engine, table)
    return total
