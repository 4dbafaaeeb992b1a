"""Shard routing.

User-owned rows live on the shard encoded in the user id. Contact indices
live on the shard a consistent-hash ring picks for the contact hash.
"""

import bisect
import hashlib
from collections.abc import Iterable

from sqlalchemy.ext.asyncio import AsyncEngine

from src.identity.core.config import Settings
from src.identity.core.exceptions import BadStorageError
from src.identity.core.ids import parse_id
from src.identity.core.logging import get_logger

logger = get_logger(__name__)


def _ring_hash(key: str) -> int:
    digest = hashlib.md5(key.encode(), usedforsecurity=False).digest()
    return int.from_bytes(digest[:8], "big")


class HashRing:
    """Consistent-hash ring over shard numbers with virtual nodes."""

    def __init__(self, nodes: Iterable[int], replicas: int = 64):
        self.nodes = sorted(set(nodes))
        if not self.nodes:
            raise ValueError("A hash ring needs at least one node")
        if replicas <= 0:
            raise ValueError("replicas must be greater than zero")
        self.replicas = replicas

        points = sorted(
            (_ring_hash(f"{node}-{i}"), node) for node in self.nodes for i in range(replicas)
        )
        self._keys = [point for point, _ in points]
        self._owners = [node for _, node in points]

    def get_node(self, key: str) -> int:
        """Shard number owning ``key``. Deterministic for a fixed node set."""
        idx = bisect.bisect(self._keys, _ring_hash(key))
        if idx == len(self._keys):
            idx = 0
        return self._owners[idx]


class ShardLocator:
    """Maps user ids and contact hashes to shard engines."""

    def __init__(self, engines: list[AsyncEngine], rings: dict[str, HashRing]):
        self.engines = engines
        self.rings = rings

    @classmethod
    def from_settings(cls, settings: Settings, engines: list[AsyncEngine]) -> "ShardLocator":
        rings = {
            name: HashRing(settings.ring_shards(name), settings.ring_replicas)
            for name in (settings.email_ring, settings.mobile_ring)
        }
        return cls(engines, rings)

    def _engine(self, shard: int) -> AsyncEngine:
        if not 0 <= shard < len(self.engines):
            logger.error("Unknown shard", shard=shard, shard_count=len(self.engines))
            raise BadStorageError()
        return self.engines[shard]

    def shard_for_user(self, user_id: int) -> int:
        try:
            return parse_id(user_id).database
        except ValueError as e:
            logger.error("Malformed user id", user_id=user_id, error=str(e))
            raise BadStorageError() from e

    def shard_for_hash(self, hash_value: str, ring_name: str) -> int:
        ring = self.rings.get(ring_name)
        if ring is None:
            logger.error("Unknown routing ring", ring=ring_name)
            raise BadStorageError()
        return ring.get_node(hash_value)

    def resolve(self, user_id: int) -> AsyncEngine:
        """Engine of the shard holding the user's own rows."""
        return self._engine(self.shard_for_user(user_id))

    def resolve_by_hash(self, hash_value: str, ring_name: str) -> AsyncEngine:
        """Engine of the shard holding a contact index row."""
        return self._engine(self.shard_for_hash(hash_value, ring_name))
