"""Identity service - create, update and delete users across shards.

The user row and profile live on the shard encoded in the user id; the email
and mobile indices live on whichever shard their routing ring picks. Every
mutation touching more than one shard runs as a saga: index writes first
(each with a compensation), the primary user write last (none).
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy import ColumnElement, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from src.identity.core.config import Settings
from src.identity.core.db import ShardLocator
from src.identity.core.exceptions import (
    BadStorageError,
    CryptoFailureError,
    EmailNotFoundError,
    MobileNotFoundError,
    NotFoundError,
    ProfileNotFoundError,
    UserNotFoundError,
    storage_errors,
)
from src.identity.core.ids import IdGenerator
from src.identity.core.logging import get_logger, loggable_contact
from src.identity.core.masking import mask_email, mask_mobile
from src.identity.core.security import (
    decrypt_text,
    derive_aes_key,
    encrypt_text,
    generate_hash,
    generate_otp_secret,
    generate_salt,
    provisioning_uri,
)
from src.identity.models import ShardTables, User, UserEmail, UserMobile, UserProfile, UserStatus
from src.identity.models.base import utc_now
from src.identity.repositories import (
    ContactIndexRepository,
    EmailIndexRepository,
    LoginCodeRepository,
    MobileIndexRepository,
    ProfileRepository,
    RefreshTokenRepository,
    UserRepository,
)
from src.identity.schemas.profile import ProfileData
from src.identity.services.saga import SagaCoordinator, StepFn

logger = get_logger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_mobile(mobile: str) -> str:
    return mobile.strip()


@dataclass(frozen=True)
class ContactKind:
    """Everything that differs between the email and mobile indices."""

    name: str
    ring: str
    repository: type[ContactIndexRepository]  # type: ignore[type-arg]
    model: type[UserEmail] | type[UserMobile]
    mask: Callable[[str], str]
    not_found: type[NotFoundError]


class IdentityService:
    """Identity service - user lifecycle across the user shard and index shards."""

    def __init__(
        self,
        settings: Settings,
        locator: ShardLocator,
        tables: ShardTables,
        id_generator: IdGenerator,
    ):
        self.settings = settings
        self.locator = locator
        self.tables = tables
        self.id_generator = id_generator
        self._aes_key = (
            derive_aes_key(settings.profile_encryption_key)
            if settings.profile_encryption_key
            else None
        )
        self.email = ContactKind(
            name="email",
            ring=settings.email_ring,
            repository=EmailIndexRepository,
            model=UserEmail,
            mask=mask_email,
            not_found=EmailNotFoundError,
        )
        self.mobile = ContactKind(
            name="mobile",
            ring=settings.mobile_ring,
            repository=MobileIndexRepository,
            model=UserMobile,
            mask=mask_mobile,
            not_found=MobileNotFoundError,
        )

    # ------------------------------------------------------------------
    # Hashing and profile encoding
    # ------------------------------------------------------------------

    def hash_contact(self, value: str) -> str:
        """Unsalted hash of a normalized contact value (the index key)."""
        return generate_hash(self.settings.password_hash_algorithm, value)

    def hash_password(self, password: str) -> tuple[str, str]:
        """Return (hash, salt) for a new password."""
        salt = generate_salt()
        return generate_hash(self.settings.password_hash_algorithm, password, salt), salt

    def encode_profile(self, data: ProfileData) -> str:
        raw = data.model_dump_json().encode()
        if self._aes_key is None:
            return raw.decode()
        try:
            return encrypt_text(raw, self._aes_key)
        except Exception as e:
            logger.error("Profile encryption failed", error=str(e))
            raise CryptoFailureError() from e

    def decode_profile(self, user_id: int, data: str) -> ProfileData:
        if not data:
            raise ProfileNotFoundError()
        raw: bytes | str = data
        if self._aes_key is not None:
            try:
                raw = decrypt_text(data, self._aes_key)
            except ValueError as e:
                logger.error("Profile decryption failed", user_id=user_id, error=str(e))
                raise CryptoFailureError() from e
        try:
            return ProfileData.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Profile data is malformed", user_id=user_id, error=str(e))
            raise CryptoFailureError() from e

    # ------------------------------------------------------------------
    # Saga steps
    # ------------------------------------------------------------------

    def _index_engine(self, kind: ContactKind, hash_value: str) -> AsyncEngine:
        return self.locator.resolve_by_hash(hash_value, kind.ring)

    def _prepare_create_index(
        self, saga: SagaCoordinator, kind: ContactKind, user_id: int, value: str
    ) -> None:
        """Create an index row; compensation deletes it."""
        hash_value = self.hash_contact(value)

        async def create(conn: AsyncConnection) -> None:
            row = kind.model(hash=hash_value, user_id=user_id, mask=kind.mask(value))
            await kind.repository(conn, self.tables).add(row)

        async def undo(conn: AsyncConnection) -> None:
            await kind.repository(conn, self.tables).delete_by_hash(hash_value, user_id)

        saga.prepare(self._index_engine(kind, hash_value), create, undo)

    def _prepare_delete_index(
        self, saga: SagaCoordinator, kind: ContactKind, user_id: int, value: str
    ) -> None:
        """Delete an index row; compensation restores it as it was."""
        hash_value = self.hash_contact(value)
        removed: list[UserEmail | UserMobile] = []

        async def delete(conn: AsyncConnection) -> None:
            repo = kind.repository(conn, self.tables)
            row = await repo.get_by_hash(hash_value)
            if row is not None and row.user_id == user_id:
                await repo.delete_by_hash(hash_value, user_id)
                removed.append(row)

        async def undo(conn: AsyncConnection) -> None:
            if not removed:
                return
            await kind.repository(conn, self.tables).add(removed.pop())

        saga.prepare(self._index_engine(kind, hash_value), delete, undo)

    def _prepare_contact_change(
        self, saga: SagaCoordinator, kind: ContactKind, user_id: int, old: str, new: str
    ) -> None:
        if old == new:
            return
        if not new:
            self._prepare_delete_index(saga, kind, user_id, old)
        elif not old:
            self._prepare_create_index(saga, kind, user_id, new)
        else:
            # New before old: a failure deleting the old row is still compensable
            self._prepare_create_index(saga, kind, user_id, new)
            self._prepare_delete_index(saga, kind, user_id, old)

    async def _run_saga(self, saga: SagaCoordinator, **context: object) -> None:
        """Commit ``saga``; on any failure compensate and surface a storage error.

        Cancellation and deadline expiry are compensated the same way but
        re-raised unchanged so the caller sees its own signal.
        """
        try:
            await saga.commit()
        except (asyncio.CancelledError, TimeoutError) as e:
            logger.warning(
                "Saga interrupted",
                saga=saga.name,
                error_type=type(e).__name__,
                completed_steps=saga.completed_steps,
                **context,
            )
            await saga.rollback()
            raise
        except Exception as e:
            extra = {"reason": "constraint_violation"} if isinstance(e, IntegrityError) else {}
            logger.error(
                "Saga failed",
                saga=saga.name,
                error=str(e),
                error_type=type(e).__name__,
                completed_steps=saga.completed_steps,
                **extra,
                **context,
            )
            rollback_errors = await saga.rollback()
            if rollback_errors:
                logger.error(
                    "Saga left partial state",
                    saga=saga.name,
                    failed_compensations=len(rollback_errors),
                    **context,
                )
            raise BadStorageError() from e

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_identity(
        self,
        status: UserStatus,
        email: str,
        mobile: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
        deadline: float | None = None,
    ) -> User:
        """Register a new user with optional email and mobile indices.

        Steps:
        1. Create email index - Compensate: delete it
        2. Create mobile index - Compensate: delete it
        3. Create user + profile - No compensation (last step)
        """
        email = normalize_email(email)
        mobile = normalize_mobile(mobile)

        user_id = self.id_generator.next().value
        passwd, salt = self.hash_password(password)
        now = utc_now()

        user = User(
            id=user_id,
            status=int(status),
            first_name=first_name,
            last_name=last_name,
            email=mask_email(email),
            mobile=mask_mobile(mobile),
            passwd=passwd,
            salt=salt,
            created_at=now,
            updated_at=now,
        )
        profile = UserProfile(
            user_id=user_id,
            data=self.encode_profile(
                ProfileData(email=email, mobile=mobile, tkey=generate_otp_secret())
            ),
            created_at=now,
            updated_at=now,
        )

        saga = SagaCoordinator("create_identity", deadline=deadline)
        if email:
            self._prepare_create_index(saga, self.email, user_id, email)
        if mobile:
            self._prepare_create_index(saga, self.mobile, user_id, mobile)

        async def create_user(conn: AsyncConnection) -> None:
            await UserRepository(conn, self.tables).add(user)
            await ProfileRepository(conn, self.tables).add(profile)

        saga.prepare(self.locator.resolve(user_id), create_user)

        await self._run_saga(
            saga,
            user_id=user_id,
            email=loggable_contact(email, self.settings.log_user_emails),
            mobile=loggable_contact(mobile, self.settings.log_user_emails),
        )
        logger.info("Identity created", user_id=user_id)
        return user

    async def update_identity(
        self,
        user_id: int,
        email: str,
        mobile: str,
        deadline: float | None = None,
    ) -> None:
        """Replace the user's email and mobile; an empty value clears it.

        Index changes run first; the profile and masked display columns are
        rewritten in the last step.
        """
        email = normalize_email(email)
        mobile = normalize_mobile(mobile)

        current = await self.get_profile_data(user_id)
        if current.email == email and current.mobile == mobile:
            return

        saga = SagaCoordinator("update_identity", deadline=deadline)
        self._prepare_contact_change(saga, self.email, user_id, current.email, email)
        self._prepare_contact_change(saga, self.mobile, user_id, current.mobile, mobile)

        updated = current.model_copy(update={"email": email, "mobile": mobile})
        data = self.encode_profile(updated)

        async def update_profile(conn: AsyncConnection) -> None:
            await UserRepository(conn, self.tables).update_fields(
                user_id, email=mask_email(email), mobile=mask_mobile(mobile)
            )
            await ProfileRepository(conn, self.tables).update_data(user_id, data)

        saga.prepare(self.locator.resolve(user_id), update_profile)

        await self._run_saga(saga, user_id=user_id)
        logger.info("Identity updated", user_id=user_id)

    async def delete_identity(self, user_id: int, deadline: float | None = None) -> None:
        """Remove a user, its indices and everything co-located with it.

        Steps:
        1. Delete email index - Compensate: restore it
        2. Delete mobile index - Compensate: restore it
        3. Delete user, profile, refresh tokens, login codes - No compensation
        """
        current = await self.get_profile_data(user_id)

        saga = SagaCoordinator("delete_identity", deadline=deadline)
        if current.email:
            self._prepare_delete_index(saga, self.email, user_id, current.email)
        if current.mobile:
            self._prepare_delete_index(saga, self.mobile, user_id, current.mobile)

        async def delete_user(conn: AsyncConnection) -> None:
            await RefreshTokenRepository(conn, self.tables).delete_all_for_user(user_id)
            await LoginCodeRepository(conn, self.tables).delete_all_for_user(user_id)
            await ProfileRepository(conn, self.tables).delete(user_id)
            await UserRepository(conn, self.tables).delete(user_id)

        saga.prepare(self.locator.resolve(user_id), delete_user)

        await self._run_saga(saga, user_id=user_id)
        logger.info("Identity deleted", user_id=user_id)

    async def update_user(
        self,
        user_id: int,
        status: UserStatus | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> None:
        """Update single-shard user fields. None leaves a field unchanged."""
        values: dict[str, object] = {}
        if status is not None:
            values["status"] = int(status)
        if first_name is not None:
            values["first_name"] = first_name
        if last_name is not None:
            values["last_name"] = last_name
        if not values:
            return

        engine = self.locator.resolve(user_id)
        with storage_errors("Update user failed", user_id=user_id):
            async with engine.begin() as conn:
                updated = await UserRepository(conn, self.tables).update_fields(user_id, **values)
        if not updated:
            raise UserNotFoundError()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_user(self, user_id: int) -> User:
        engine = self.locator.resolve(user_id)
        with storage_errors("Get user failed", user_id=user_id):
            async with engine.connect() as conn:
                user = await UserRepository(conn, self.tables).get_by_id(user_id)
        if user is None:
            raise UserNotFoundError()
        return user

    async def get_profile_data(self, user_id: int) -> ProfileData:
        engine = self.locator.resolve(user_id)
        with storage_errors("Get profile failed", user_id=user_id):
            async with engine.connect() as conn:
                profile = await ProfileRepository(conn, self.tables).get_by_user(user_id)
        if profile is None:
            raise ProfileNotFoundError()
        return self.decode_profile(user_id, profile.data)

    async def _get_user_id_by_contact(self, kind: ContactKind, value: str) -> int:
        hash_value = self.hash_contact(value)
        engine = self._index_engine(kind, hash_value)
        with storage_errors(f"Get {kind.name} index failed"):
            async with engine.connect() as conn:
                row = await kind.repository(conn, self.tables).get_by_hash(hash_value)
        if row is None:
            raise kind.not_found()
        return row.user_id

    async def _get_user_by_contact(self, kind: ContactKind, value: str) -> User:
        user_id = await self._get_user_id_by_contact(kind, value)
        try:
            return await self.get_user(user_id)
        except UserNotFoundError as e:
            # Index row outlived its user: a saga was interrupted mid-way
            logger.error(
                "Contact index points at missing user",
                index=kind.name,
                user_id=user_id,
                contact=loggable_contact(value, self.settings.log_user_emails),
            )
            raise BadStorageError() from e

    async def get_user_id_by_email(self, email: str) -> int:
        return await self._get_user_id_by_contact(self.email, normalize_email(email))

    async def get_user_id_by_mobile(self, mobile: str) -> int:
        return await self._get_user_id_by_contact(self.mobile, normalize_mobile(mobile))

    async def get_user_by_email(self, email: str) -> User:
        return await self._get_user_by_contact(self.email, normalize_email(email))

    async def get_user_by_mobile(self, mobile: str) -> User:
        return await self._get_user_by_contact(self.mobile, normalize_mobile(mobile))

    # ------------------------------------------------------------------
    # Listing across shards
    # ------------------------------------------------------------------

    def _user_conditions(
        self,
        status: UserStatus | None,
        name: str | None,
        created_after: datetime | None,
        created_before: datetime | None,
    ) -> list[ColumnElement[bool]]:
        table = self.tables.user
        conditions: list[ColumnElement[bool]] = []
        if status is not None:
            conditions.append(table.c.status == int(status))
        if name:
            pattern = f"{name.strip().lower()}%"
            conditions.append(
                or_(
                    func.lower(table.c.first_name).like(pattern),
                    func.lower(table.c.last_name).like(pattern),
                )
            )
        if created_after is not None:
            conditions.append(table.c.created_at >= created_after)
        if created_before is not None:
            conditions.append(table.c.created_at < created_before)
        return conditions

    async def query_users(
        self,
        limit: int,
        status: UserStatus | None = None,
        name: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
    ) -> list[User]:
        """Up to ``limit`` matching users from all shards, newest first.

        ``name`` matches the start of the first or last name, ignoring case.
        Shards are read one after another.
        """
        if limit <= 0:
            raise ValueError("limit must be positive")

        conditions = self._user_conditions(status, name, created_after, created_before)
        users: list[User] = []
        for shard, engine in enumerate(self.locator.engines):
            with storage_errors("Query users failed", shard=shard):
                async with engine.connect() as conn:
                    users.extend(await UserRepository(conn, self.tables).query(conditions, limit))

        users.sort(key=lambda user: user.id, reverse=True)
        return users[:limit]

    async def count_users(
        self,
        status: UserStatus | None = None,
        name: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
    ) -> int:
        """Number of matching users over all shards. Filters as in ``query_users``."""
        conditions = self._user_conditions(status, name, created_after, created_before)
        total = 0
        for shard, engine in enumerate(self.locator.engines):
            with storage_errors("Count users failed", shard=shard):
                async with engine.connect() as conn:
                    total += await UserRepository(conn, self.tables).count(conditions)
        return total

    async def get_otp_secret(self, user_id: int) -> str:
        return (await self.get_profile_data(user_id)).tkey

    async def get_otp_provisioning_uri(self, user_id: int) -> str:
        """otpauth:// URI for enrolling the user's authenticator app."""
        return provisioning_uri(self.settings, await self.get_otp_secret(user_id))
