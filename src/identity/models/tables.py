"""Per-deployment table set.

The SQLModel classes declare the canonical (unprefixed) tables. Every shard
runs the same schema, optionally under a configured table prefix, so the
repositories work against a copy of those tables in a separate MetaData.
"""

from dataclasses import dataclass

from sqlalchemy import MetaData, Table
from sqlmodel import SQLModel

from src.identity.models.auth import LoginCode, RefreshToken
from src.identity.models.user import User, UserEmail, UserMobile, UserProfile


def _copy(model: type[SQLModel], metadata: MetaData, prefix: str) -> Table:
    table: Table = model.__table__  # type: ignore[attr-defined]
    return table.to_metadata(metadata, name=f"{prefix}{table.name}")


@dataclass(frozen=True)
class ShardTables:
    """Prefixed tables shared by every shard."""

    metadata: MetaData
    user: Table
    user_profile: Table
    user_email: Table
    user_mobile: Table
    user_token: Table
    login_code: Table

    @classmethod
    def build(cls, prefix: str = "") -> "ShardTables":
        metadata = MetaData()
        return cls(
            metadata=metadata,
            user=_copy(User, metadata, prefix),
            user_profile=_copy(UserProfile, metadata, prefix),
            user_email=_copy(UserEmail, metadata, prefix),
            user_mobile=_copy(UserMobile, metadata, prefix),
            user_token=_copy(RefreshToken, metadata, prefix),
            login_code=_copy(LoginCode, metadata, prefix),
        )
