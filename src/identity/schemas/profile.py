from pydantic import BaseModel


class ProfileData(BaseModel):
    """Canonical contact data for a user, stored on the user's shard.

    Serialized as ``{"email": ..., "mobile": ..., "tkey": ...}``; ``tkey`` is the
    base32 TOTP secret.
    """

    email: str = ""
    mobile: str = ""
    tkey: str = ""
