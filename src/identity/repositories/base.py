"""Base repository with common table operations."""

from typing import Any

from sqlalchemy import Row, Table, insert
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlmodel import SQLModel

from src.identity.models.tables import ShardTables


class BaseRepository[ModelType: SQLModel]:
    """Base repository bound to one shard transaction.

    Repositories handle data access only. The caller owns the transaction
    (``engine.begin()``), so nothing here commits or rolls back.
    """

    model: type[ModelType]
    table_name: str

    def __init__(self, conn: AsyncConnection, tables: ShardTables):
        self.conn = conn
        self.table: Table = getattr(tables, self.table_name)

    def _to_model(self, row: Row[Any] | None) -> ModelType | None:
        if row is None:
            return None
        return self.model(**row._mapping)

    async def add(self, entity: ModelType) -> None:
        """Insert ``entity`` as a new row."""
        await self.conn.execute(insert(self.table).values(**entity.model_dump()))
