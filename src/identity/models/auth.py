"""Authentication-related models - refresh tokens and login codes.

Both are co-located with the user row on the user's shard.
"""

from datetime import datetime

from sqlalchemy import BigInteger
from sqlmodel import Field, SQLModel

from src.identity.models.base import utc_now


class RefreshToken(SQLModel, table=True):
    """Refresh token storage - only the token hash is persisted."""

    __tablename__ = "user_token"

    hash: str = Field(max_length=255, primary_key=True)
    user_id: int = Field(sa_type=BigInteger, index=True)
    user_ip: str = Field(default="", max_length=45)
    user_agent: str = Field(default="", max_length=512)
    expires_on: datetime
    created_at: datetime = Field(default_factory=utc_now)


class LoginCode(SQLModel, table=True):
    """One-time login code storage - only the code hash is persisted."""

    __tablename__ = "user_login_code"

    user_id: int = Field(
        sa_type=BigInteger,
        primary_key=True,
        sa_column_kwargs={"autoincrement": False},
    )
    hash: str = Field(max_length=255, primary_key=True)
    user_ip: str = Field(default="", max_length=45)
    expires_on: datetime
    created_at: datetime = Field(default_factory=utc_now)
