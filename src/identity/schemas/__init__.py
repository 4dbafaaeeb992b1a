from src.identity.schemas.auth import LoginOption, Session
from src.identity.schemas.profile import ProfileData

__all__ = [
    # Auth
    "LoginOption",
    "Session",
    # Profile
    "ProfileData",
]
