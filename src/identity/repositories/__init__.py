"""Repository layer - data access on a single shard transaction."""

from src.identity.repositories.base import BaseRepository
from src.identity.repositories.contact import (
    ContactIndexRepository,
    EmailIndexRepository,
    MobileIndexRepository,
)
from src.identity.repositories.login_code import LoginCodeRepository
from src.identity.repositories.token import RefreshTokenRepository
from src.identity.repositories.user import ProfileRepository, UserRepository

__all__ = [
    # Base
    "BaseRepository",
    # User shard
    "LoginCodeRepository",
    "ProfileRepository",
    "RefreshTokenRepository",
    "UserRepository",
    # Contact indices
    "ContactIndexRepository",
    "EmailIndexRepository",
    "MobileIndexRepository",
]
