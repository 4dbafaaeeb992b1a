"""Database utilities - shard engines, routing, schema."""

from src.identity.core.db.engine import create_shard_engines, dispose_shard_engines
from src.identity.core.db.migrations import create_schema
from src.identity.core.db.sharding import HashRing, ShardLocator

__all__ = [
    # Engines
    "create_shard_engines",
    "dispose_shard_engines",
    # Routing
    "HashRing",
    "ShardLocator",
    # Schema
    "create_schema",
]
