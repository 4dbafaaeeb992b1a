"""Repositories for the contact lookup indices (routed by contact hash)."""

from sqlalchemy import delete, select
from sqlmodel import SQLModel

from src.identity.models.user import UserEmail, UserMobile
from src.identity.repositories.base import BaseRepository


class ContactIndexRepository[ModelType: SQLModel](BaseRepository[ModelType]):
    """Lookup rows keyed by the hash of a normalized contact value."""

    async def get_by_hash(self, hash_value: str) -> ModelType | None:
        result = await self.conn.execute(select(self.table).where(self.table.c.hash == hash_value))
        return self._to_model(result.first())

    async def delete_by_hash(self, hash_value: str, user_id: int) -> int:
        """Delete the index row only if it still points at ``user_id``."""
        result = await self.conn.execute(
            delete(self.table).where(
                self.table.c.hash == hash_value,
                self.table.c.user_id == user_id,
            )
        )
        return result.rowcount or 0


class EmailIndexRepository(ContactIndexRepository[UserEmail]):
    model = UserEmail
    table_name = "user_email"


class MobileIndexRepository(ContactIndexRepository[UserMobile]):
    model = UserMobile
    table_name = "user_mobile"
