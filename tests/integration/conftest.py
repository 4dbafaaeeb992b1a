"""Integration test fixtures: real SQLite shards on disk.

Each test gets three fresh shard databases in its own temp directory.
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from src.identity.core.config import Settings
from src.identity.main import IdentityCore
from tests.helpers import make_settings, shard_urls


@pytest.fixture
def shard_settings(tmp_path: Path) -> Settings:
    return make_settings(shard_urls=shard_urls(tmp_path))


@pytest.fixture
async def core(shard_settings: Settings) -> AsyncGenerator[IdentityCore]:
    async with IdentityCore.from_settings(shard_settings) as identity_core:
        await identity_core.create_schema()
        yield identity_core


@pytest.fixture
async def encrypted_core(tmp_path: Path) -> AsyncGenerator[IdentityCore]:
    settings = make_settings(
        shard_urls=shard_urls(tmp_path),
        profile_encryption_key="profile-key-for-tests",
        table_prefix="auth",
    )
    async with IdentityCore.from_settings(settings) as identity_core:
        await identity_core.create_schema()
        yield identity_core
