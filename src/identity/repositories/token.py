"""Repository for RefreshToken rows (user's own shard)."""

from sqlalchemy import delete, select

from src.identity.models.auth import RefreshToken
from src.identity.models.base import utc_now
from src.identity.repositories.base import BaseRepository


class RefreshTokenRepository(BaseRepository[RefreshToken]):
    model = RefreshToken
    table_name = "user_token"

    async def get_by_hash(self, user_id: int, token_hash: str) -> RefreshToken | None:
        """Get a persisted refresh token by its hash, scoped to its owner."""
        result = await self.conn.execute(
            select(self.table).where(
                self.table.c.user_id == user_id,
                self.table.c.hash == token_hash,
            )
        )
        return self._to_model(result.first())

    async def consume(self, user_id: int, token_hash: str) -> RefreshToken | None:
        """Atomically redeem a live refresh token.

        Returns the consumed record, or None when no live record matched.
        Only the caller whose conditional DELETE removes the row wins, so
        concurrent rotations of one token succeed at most once.
        """
        conditions = (
            self.table.c.user_id == user_id,
            self.table.c.hash == token_hash,
            self.table.c.expires_on > utc_now(),
        )
        result = await self.conn.execute(select(self.table).where(*conditions))
        record = self._to_model(result.first())
        if record is None:
            return None

        deleted = await self.conn.execute(delete(self.table).where(*conditions))
        if deleted.rowcount != 1:
            return None
        return record

    async def delete_by_hash(self, user_id: int, token_hash: str) -> int:
        result = await self.conn.execute(
            delete(self.table).where(
                self.table.c.user_id == user_id,
                self.table.c.hash == token_hash,
            )
        )
        return result.rowcount or 0

    async def delete_all_for_user(self, user_id: int) -> int:
        """Delete every refresh token of a user. Returns the number deleted."""
        result = await self.conn.execute(
            delete(self.table).where(self.table.c.user_id == user_id)
        )
        return result.rowcount or 0

    async def cleanup_expired(self, user_id: int) -> int:
        """Delete a user's expired refresh tokens.

        Idempotent: DELETE operations are inherently idempotent.
        """
        result = await self.conn.execute(
            delete(self.table).where(
                self.table.c.user_id == user_id,
                self.table.c.expires_on <= utc_now(),
            )
        )
        return result.rowcount or 0
