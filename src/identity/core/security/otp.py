import pyotp

from src.identity.core.config import Settings


def generate_otp_secret() -> str:
    return pyotp.random_base32()


def verify_otp(settings: Settings, secret: str, otp: str) -> bool:
    if not secret or not otp:
        return False
    totp = pyotp.TOTP(secret, issuer=settings.totp_issuer)
    # allow adjacent time steps for clock skew
    return totp.verify(otp, valid_window=settings.totp_valid_window)


def provisioning_uri(settings: Settings, secret: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(
        name=settings.totp_account_name,
        issuer_name=settings.totp_issuer,
    )
