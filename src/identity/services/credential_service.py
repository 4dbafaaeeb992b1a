"""Credential verification - passwords, TOTP codes and one-time login codes."""

from datetime import timedelta

from src.identity.core.config import Settings
from src.identity.core.db import ShardLocator
from src.identity.core.exceptions import (
    BadStorageError,
    LoginCodeMismatchError,
    OTPMismatchError,
    PasswordMismatchError,
    storage_errors,
)
from src.identity.core.logging import get_logger
from src.identity.core.security import generate_hash, rand_digits, verify_hash, verify_otp
from src.identity.models import LoginCode, ShardTables
from src.identity.models.base import utc_now
from src.identity.repositories import LoginCodeRepository

logger = get_logger(__name__)

MAX_CODE_ATTEMPTS = 5


class CredentialService:
    """Checks a candidate credential against what is stored for a user.

    Mismatches raise a ``CredentialMismatchError`` subclass; they are expected
    outcomes and only logged at debug level.
    """

    def __init__(self, settings: Settings, locator: ShardLocator, tables: ShardTables):
        self.settings = settings
        self.locator = locator
        self.tables = tables

    def verify_password(self, stored_hash: str, stored_salt: str, candidate: str) -> None:
        if not verify_hash(
            self.settings.password_hash_algorithm, stored_hash, candidate, stored_salt
        ):
            logger.debug("Password mismatch")
            raise PasswordMismatchError()

    def verify_otp(self, secret: str, candidate: str) -> None:
        if not verify_otp(self.settings, secret, candidate):
            logger.debug("OTP mismatch")
            raise OTPMismatchError()

    def _hash_code(self, code: str) -> str:
        return generate_hash(self.settings.password_hash_algorithm, code)

    async def issue_login_code(self, user_id: int, client_ip: str = "") -> str:
        """Create a numeric login code for ``user_id``; only its hash is stored.

        A code equal to one of the user's live codes is drawn again. Returns
        the plain code for delivery to the user.
        """
        now = utc_now()
        expires_on = now + timedelta(seconds=self.settings.login_code_ttl_seconds)

        engine = self.locator.resolve(user_id)
        with storage_errors("Issue login code failed", user_id=user_id):
            async with engine.begin() as conn:
                repo = LoginCodeRepository(conn, self.tables)
                await repo.cleanup_expired(user_id)
                for _ in range(MAX_CODE_ATTEMPTS):
                    code = rand_digits(self.settings.login_code_length)
                    code_hash = self._hash_code(code)
                    if not await repo.exists(user_id, code_hash):
                        break
                else:
                    logger.error(
                        "No free login code",
                        user_id=user_id,
                        attempts=MAX_CODE_ATTEMPTS,
                    )
                    raise BadStorageError()

                await repo.add(
                    LoginCode(
                        user_id=user_id,
                        hash=code_hash,
                        user_ip=client_ip,
                        expires_on=expires_on,
                        created_at=now,
                    )
                )

        logger.info("Login code issued", user_id=user_id)
        return code

    async def verify_login_code(self, user_id: int, candidate: str) -> str:
        """Redeem a login code. Returns the IP address it was issued to.

        A code is accepted at most once: redemption deletes it. Unknown,
        already used and expired codes all fail the same way.
        """
        if not candidate:
            raise LoginCodeMismatchError()

        engine = self.locator.resolve(user_id)
        with storage_errors("Verify login code failed", user_id=user_id):
            async with engine.begin() as conn:
                user_ip = await LoginCodeRepository(conn, self.tables).consume(
                    user_id, self._hash_code(candidate)
                )

        if user_ip is None:
            logger.debug("Login code mismatch", user_id=user_id)
            raise LoginCodeMismatchError()
        return user_ip

    async def purge_expired_login_codes(self, user_id: int) -> int:
        engine = self.locator.resolve(user_id)
        with storage_errors("Purge login codes failed", user_id=user_id):
            async with engine.begin() as conn:
                deleted = await LoginCodeRepository(conn, self.tables).cleanup_expired(user_id)
        if deleted:
            logger.info("Expired login codes purged", user_id=user_id, count=deleted)
        return deleted
