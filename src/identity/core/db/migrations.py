"""Schema bootstrap for every shard."""

from src.identity.core.db.sharding import ShardLocator
from src.identity.core.logging import get_logger
from src.identity.models.tables import ShardTables

logger = get_logger(__name__)


async def create_schema(locator: ShardLocator, tables: ShardTables) -> None:
    """Create all identity tables on every shard (idempotent)."""
    for shard, engine in enumerate(locator.engines):
        async with engine.begin() as conn:
            await conn.run_sync(tables.metadata.create_all)
        logger.info("Shard schema ready", shard=shard)
