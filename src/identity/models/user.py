"""User models - the user row and profile live on the shard encoded in the user id,
contact indices live on the shard their hash routes to."""

from datetime import datetime

from sqlalchemy import BigInteger, Text
from sqlmodel import Field, SQLModel

from src.identity.models.base import utc_now
from src.identity.models.enums import UserStatus


class User(SQLModel, table=True):
    """Primary user record."""

    __tablename__ = "user"

    id: int = Field(
        sa_type=BigInteger,
        primary_key=True,
        sa_column_kwargs={"autoincrement": False},
    )
    status: int = Field(default=UserStatus.WAITING.value)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    # Masked display forms, denormalized from the profile
    email: str = Field(default="", max_length=255)
    mobile: str = Field(default="", max_length=50)
    passwd: str = Field(max_length=255)
    salt: str = Field(max_length=32)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class UserProfile(SQLModel, table=True):
    """Profile blob (JSON, optionally AES-GCM encrypted), one per user."""

    __tablename__ = "user_profile"

    user_id: int = Field(
        sa_type=BigInteger,
        primary_key=True,
        sa_column_kwargs={"autoincrement": False},
    )
    data: str = Field(sa_type=Text)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class UserEmail(SQLModel, table=True):
    """Email lookup index: hash of the normalized email -> owning user."""

    __tablename__ = "user_email"

    hash: str = Field(max_length=255, primary_key=True)
    user_id: int = Field(sa_type=BigInteger, index=True)
    mask: str = Field(default="", max_length=255)
    is_verified: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now)


class UserMobile(SQLModel, table=True):
    """Mobile lookup index: hash of the normalized mobile -> owning user."""

    __tablename__ = "user_mobile"

    hash: str = Field(max_length=255, primary_key=True)
    user_id: int = Field(sa_type=BigInteger, index=True)
    mask: str = Field(default="", max_length=50)
    is_verified: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now)
