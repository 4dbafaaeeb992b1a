"""Composition root - wires settings, shards and services together."""

from types import TracebackType
from typing import Self

from sqlalchemy.ext.asyncio import AsyncEngine

from src.identity.core.background import BackgroundTasks
from src.identity.core.config import Settings
from src.identity.core.db import (
    ShardLocator,
    create_schema,
    create_shard_engines,
    dispose_shard_engines,
)
from src.identity.core.ids import IdGenerator
from src.identity.core.logging import get_logger
from src.identity.models import ShardTables
from src.identity.services import (
    AuthService,
    CredentialService,
    IdentityService,
    SessionService,
)

logger = get_logger(__name__)


class IdentityCore:
    """Everything needed to serve identity operations for one process.

    Example usage:
        async with IdentityCore.from_settings(settings) as core:
            await core.create_schema()
            session = await core.auth.sign_in("a@x.com", "pw")
    """

    def __init__(
        self,
        settings: Settings,
        engines: list[AsyncEngine],
        locator: ShardLocator,
        tables: ShardTables,
        id_generator: IdGenerator,
        background: BackgroundTasks,
    ):
        self.settings = settings
        self.engines = engines
        self.locator = locator
        self.tables = tables
        self.id_generator = id_generator
        self.background = background

        self.identities = IdentityService(settings, locator, tables, id_generator)
        self.credentials = CredentialService(settings, locator, tables)
        self.sessions = SessionService(settings, locator, tables, background)
        self.auth = AuthService(self.identities, self.credentials, self.sessions)

    @classmethod
    def from_settings(cls, settings: Settings) -> Self:
        engines = create_shard_engines(settings)
        return cls(
            settings=settings,
            engines=engines,
            locator=ShardLocator.from_settings(settings, engines),
            tables=ShardTables.build(settings.table_prefix),
            id_generator=IdGenerator(len(engines), worker_id=settings.worker_id),
            background=BackgroundTasks(),
        )

    async def create_schema(self) -> None:
        await create_schema(self.locator, self.tables)

    async def aclose(self) -> None:
        """Drain background cleanup, then release every shard connection pool."""
        logger.info(f"Shutting down, {self.background.pending_count} background tasks pending")
        drained = await self.background.drain(self.settings.background_drain_timeout)
        if not drained:
            await self.background.cancel_all()
        await dispose_shard_engines(self.engines)
        logger.info("Shutdown complete")

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
