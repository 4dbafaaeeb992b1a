"""Model exports.

Import from here: `from src.identity.models import User, ShardTables`
"""

from src.identity.models.auth import LoginCode, RefreshToken
from src.identity.models.base import utc_now
from src.identity.models.enums import UserStatus
from src.identity.models.tables import ShardTables
from src.identity.models.user import User, UserEmail, UserMobile, UserProfile

__all__ = [
    # Enums
    "UserStatus",
    # Shard tables
    "LoginCode",
    "RefreshToken",
    "ShardTables",
    "User",
    "UserEmail",
    "UserMobile",
    "UserProfile",
    # Helpers
    "utc_now",
]
