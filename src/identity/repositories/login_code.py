"""Repository for LoginCode rows (user's own shard)."""

from sqlalchemy import delete, select

from src.identity.models.auth import LoginCode
from src.identity.models.base import utc_now
from src.identity.repositories.base import BaseRepository


class LoginCodeRepository(BaseRepository[LoginCode]):
    model = LoginCode
    table_name = "login_code"

    async def consume(self, user_id: int, code_hash: str) -> str | None:
        """Atomically redeem a live code.

        Returns the IP the code was issued to, or None when no live code
        matched. Only the caller whose conditional DELETE removes the row
        wins, so concurrent redemptions of one code succeed at most once.
        """
        conditions = (
            self.table.c.user_id == user_id,
            self.table.c.hash == code_hash,
            self.table.c.expires_on > utc_now(),
        )
        result = await self.conn.execute(select(self.table.c.user_ip).where(*conditions))
        user_ip = result.scalar_one_or_none()
        if user_ip is None:
            return None

        deleted = await self.conn.execute(delete(self.table).where(*conditions))
        if deleted.rowcount != 1:
            return None
        return user_ip

    async def exists(self, user_id: int, code_hash: str) -> bool:
        result = await self.conn.execute(
            select(self.table.c.hash).where(
                self.table.c.user_id == user_id,
                self.table.c.hash == code_hash,
            )
        )
        return result.first() is not None

    async def delete_all_for_user(self, user_id: int) -> int:
        result = await self.conn.execute(
            delete(self.table).where(self.table.c.user_id == user_id)
        )
        return result.rowcount or 0

    async def cleanup_expired(self, user_id: int) -> int:
        """Delete a user's expired login codes."""
        result = await self.conn.execute(
            delete(self.table).where(
                self.table.c.user_id == user_id,
                self.table.c.expires_on <= utc_now(),
            )
        )
        return result.rowcount or 0
