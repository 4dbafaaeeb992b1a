"""Repository for User and UserProfile rows (user's own shard)."""

from collections.abc import Sequence
from typing import Any

from sqlalchemy import ColumnElement, delete, func, select, update

from src.identity.models.base import utc_now
from src.identity.models.user import User, UserProfile
from src.identity.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    model = User
    table_name = "user"

    async def get_by_id(self, user_id: int) -> User | None:
        result = await self.conn.execute(select(self.table).where(self.table.c.id == user_id))
        return self._to_model(result.first())

    async def query(self, conditions: Sequence[ColumnElement[bool]], limit: int) -> list[User]:
        """Newest users (highest id first) matching every condition."""
        stmt = select(self.table).where(*conditions).order_by(self.table.c.id.desc()).limit(limit)
        result = await self.conn.execute(stmt)
        return [User(**row._mapping) for row in result]

    async def count(self, conditions: Sequence[ColumnElement[bool]]) -> int:
        stmt = select(func.count()).select_from(self.table).where(*conditions)
        return (await self.conn.execute(stmt)).scalar_one()

    async def update_fields(self, user_id: int, **values: Any) -> int:
        """Update columns on a user row; returns the number of rows touched."""
        stmt = (
            update(self.table)
            .where(self.table.c.id == user_id)
            .values(updated_at=utc_now(), **values)
        )
        result = await self.conn.execute(stmt)
        return result.rowcount or 0

    async def delete(self, user_id: int) -> int:
        result = await self.conn.execute(delete(self.table).where(self.table.c.id == user_id))
        return result.rowcount or 0


class ProfileRepository(BaseRepository[UserProfile]):
    model = UserProfile
    table_name = "user_profile"

    async def get_by_user(self, user_id: int) -> UserProfile | None:
        result = await self.conn.execute(
            select(self.table).where(self.table.c.user_id == user_id)
        )
        return self._to_model(result.first())

    async def update_data(self, user_id: int, data: str) -> int:
        stmt = (
            update(self.table)
            .where(self.table.c.user_id == user_id)
            .values(data=data, updated_at=utc_now())
        )
        result = await self.conn.execute(stmt)
        return result.rowcount or 0

    async def delete(self, user_id: int) -> int:
        result = await self.conn.execute(
            delete(self.table).where(self.table.c.user_id == user_id)
        )
        return result.rowcount or 0
