"""Session service - token issuance, rotation and revocation.

Access tokens are stateless and stay valid until they expire. Refresh tokens
are single-use: only their SHA256 hash is stored on the user's shard, and
rotating one deletes its record in the same transaction that stores the new
one.
"""

from jose import JWTError

from src.identity.core.background import BackgroundTasks
from src.identity.core.config import Settings
from src.identity.core.db import ShardLocator
from src.identity.core.exceptions import CryptoFailureError, InvalidTokenError, storage_errors
from src.identity.core.logging import get_logger
from src.identity.core.security import (
    TokenType,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_token,
)
from src.identity.models import RefreshToken, ShardTables, User
from src.identity.models.base import utc_now
from src.identity.repositories import RefreshTokenRepository, UserRepository
from src.identity.schemas.auth import Session

logger = get_logger(__name__)


class SessionService:
    """Issues, rotates and revokes access/refresh token pairs."""

    def __init__(
        self,
        settings: Settings,
        locator: ShardLocator,
        tables: ShardTables,
        background: BackgroundTasks,
    ):
        self.settings = settings
        self.locator = locator
        self.tables = tables
        self.background = background

    def _claimed_user_id(self, token: str, expected_type: str) -> int:
        """Validate signature, expiry and token type; return the subject."""
        payload = decode_token(self.settings, token)
        if payload is None:
            raise InvalidTokenError()

        if payload.get("type") != expected_type:
            raise InvalidTokenError()

        try:
            return int(payload["sub"])
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidTokenError() from e

    def _mint(self, user: User, client_ip: str, client_agent: str) -> tuple[Session, RefreshToken]:
        """Sign a token pair for ``user`` and build the record to persist."""
        try:
            access_token = create_access_token(self.settings, user.id)
            refresh_token, expires_on = create_refresh_token(self.settings, user.id)
        except JWTError as e:
            logger.error("Token signing failed", user_id=user.id, error=str(e))
            raise CryptoFailureError() from e

        record = RefreshToken(
            hash=hash_token(refresh_token),
            user_id=user.id,
            user_ip=client_ip,
            user_agent=client_agent,
            expires_on=expires_on,
            created_at=utc_now(),
        )
        session = Session(
            user_id=user.id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.settings.access_token_ttl_seconds,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            mobile=user.mobile,
        )
        return session, record

    async def create_session(
        self,
        user: User,
        client_ip: str = "",
        client_agent: str = "",
    ) -> Session:
        """Mint a token pair for ``user`` and persist the refresh token hash."""
        session, record = self._mint(user, client_ip, client_agent)

        engine = self.locator.resolve(user.id)
        with storage_errors("Create session failed", user_id=user.id):
            async with engine.begin() as conn:
                await RefreshTokenRepository(conn, self.tables).add(record)

        return session

    async def refresh_session(
        self,
        refresh_token: str,
        client_ip: str | None = None,
        client_agent: str | None = None,
    ) -> Session:
        """Exchange a refresh token for a new pair (rotation).

        The consumed record is deleted and the new one stored in a single
        transaction on the user's shard, so a token rotates at most once even
        under concurrent use. Client IP and agent default to those recorded
        with the consumed token.
        """
        user_id = self._claimed_user_id(refresh_token, TokenType.REFRESH)

        engine = self.locator.resolve(user_id)
        with storage_errors("Refresh session failed", user_id=user_id):
            async with engine.begin() as conn:
                tokens = RefreshTokenRepository(conn, self.tables)
                consumed = await tokens.consume(user_id, hash_token(refresh_token))
                user = await UserRepository(conn, self.tables).get_by_id(user_id)
                if consumed is None or user is None:
                    logger.info("Refresh token not recognized", user_id=user_id)
                    raise InvalidTokenError()

                session, record = self._mint(
                    user,
                    consumed.user_ip if client_ip is None else client_ip,
                    consumed.user_agent if client_agent is None else client_agent,
                )
                await tokens.add(record)

        self.background.spawn(
            self._cleanup_expired(user_id),
            name=f"purge-refresh-tokens-{user_id}",
        )
        return session

    async def _cleanup_expired(self, user_id: int) -> None:
        engine = self.locator.resolve(user_id)
        async with engine.begin() as conn:
            await RefreshTokenRepository(conn, self.tables).cleanup_expired(user_id)

    async def sign_out(self, user_id: int, refresh_token: str | None = None) -> int:
        """Delete every refresh token of the user, or just ``refresh_token``.

        Returns the number of records deleted. Outstanding access tokens are
        not affected.
        """
        engine = self.locator.resolve(user_id)
        with storage_errors("Sign out failed", user_id=user_id):
            async with engine.begin() as conn:
                repo = RefreshTokenRepository(conn, self.tables)
                if refresh_token:
                    deleted = await repo.delete_by_hash(user_id, hash_token(refresh_token))
                else:
                    deleted = await repo.delete_all_for_user(user_id)

        logger.info("User signed out", user_id=user_id, revoked=deleted)
        return deleted

    def is_authenticated(self, access_token: str) -> int:
        """Return the user id of a valid access token. No storage access."""
        return self._claimed_user_id(access_token, TokenType.ACCESS)

    async def purge_expired_tokens(self, user_id: int) -> int:
        engine = self.locator.resolve(user_id)
        with storage_errors("Purge refresh tokens failed", user_id=user_id):
            async with engine.begin() as conn:
                deleted = await RefreshTokenRepository(conn, self.tables).cleanup_expired(user_id)
        if deleted:
            logger.info("Expired refresh tokens purged", user_id=user_id, count=deleted)
        return deleted
