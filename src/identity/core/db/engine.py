"""Shard engine management."""

from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from src.identity.core.config import Settings


def _is_sqlite(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def _engine_kwargs(url: str, settings: Settings) -> dict[str, Any]:
    """Pool arguments; SQLite's default pool does not accept sizing options."""
    if _is_sqlite(url):
        return {}
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,
    }


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    """Make SQLite take its write lock when a transaction begins.

    With the driver's deferred transactions two connections can both read a
    row and then race to delete it; one of them fails with "database is
    locked" instead of waiting and seeing the row gone.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def disable_driver_transactions(dbapi_connection: Any, _: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def begin_immediate(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_shard_engines(settings: Settings) -> list[AsyncEngine]:
    """Create one engine per configured shard, in shard-number order."""
    engines = []
    for url in settings.shard_urls:
        engine = create_async_engine(url, **_engine_kwargs(url, settings))
        if _is_sqlite(url):
            _use_immediate_transactions(engine)
        engines.append(engine)
    return engines


async def dispose_shard_engines(engines: list[AsyncEngine]) -> None:
    """Dispose every shard engine. Call during shutdown."""
    for engine in engines:
        await engine.dispose()
