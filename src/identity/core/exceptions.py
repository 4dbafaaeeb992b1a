"""Identity error taxonomy.

Not-found and credential-mismatch errors are ordinary outcomes that callers
are expected to handle. ``BadStorageError`` never carries driver detail; the
detail is logged where the fault is translated.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from src.identity.core.logging import get_logger

logger = get_logger(__name__)


class IdentityError(Exception):
    """Base class for every error surfaced by the identity core."""

    code = "auth: unknown"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


# Not found


class NotFoundError(IdentityError):
    code = "auth: not_found"


class EmailNotFoundError(NotFoundError):
    code = "auth: email_not_found"


class MobileNotFoundError(NotFoundError):
    code = "auth: mobile_not_found"


class UserNotFoundError(NotFoundError):
    code = "auth: user_not_found"


class ProfileNotFoundError(NotFoundError):
    code = "auth: profile_not_found"


# Credential mismatch


class CredentialMismatchError(IdentityError):
    code = "auth: credential_not_matched"


class PasswordMismatchError(CredentialMismatchError):
    code = "auth: passwd_not_matched"


class OTPMismatchError(CredentialMismatchError):
    code = "auth: otp_not_matched"


class LoginCodeMismatchError(CredentialMismatchError):
    code = "auth: code_not_matched"


# Tokens, storage and crypto


class InvalidTokenError(IdentityError):
    code = "auth: invalid_token"


class BadStorageError(IdentityError):
    code = "auth: bad_database"


class CryptoFailureError(IdentityError):
    code = "auth: bad_crypto"


@contextmanager
def storage_errors(event: str, **context: Any) -> Iterator[None]:
    """Translate SQLAlchemy faults into ``BadStorageError``.

    The full driver error is logged under ``event``; the raised error is sanitized.
    ``IdentityError`` raised inside the block passes through untouched.
    """
    try:
        yield
    except IntegrityError as e:
        logger.error(event, reason="constraint_violation", error=str(e), **context)
        raise BadStorageError() from e
    except SQLAlchemyError as e:
        logger.error(event, error=str(e), **context)
        raise BadStorageError() from e
