"""Authentication service - registration and sign-in flows.

Composes the identity, credential and session services into the operations
callers actually use: register, sign in by password / TOTP / login code,
refresh, sign out.
"""

from src.identity.core.exceptions import EmailNotFoundError, MobileNotFoundError
from src.identity.core.logging import bind_user_context, get_logger
from src.identity.core.security import ALPHA_NUMBER, rand_string
from src.identity.models import User, UserStatus
from src.identity.schemas.auth import LoginOption, Session
from src.identity.services.credential_service import CredentialService
from src.identity.services.identity_service import IdentityService
from src.identity.services.session_service import SessionService

logger = get_logger(__name__)

GENERATED_PASSWORD_LENGTH = 12


class AuthService:
    """Authentication flows over email or mobile identities."""

    def __init__(
        self,
        identities: IdentityService,
        credentials: CredentialService,
        sessions: SessionService,
    ):
        self.identities = identities
        self.credentials = credentials
        self.sessions = sessions

    def _bind(self, user: User) -> None:
        bind_user_context(
            user.id,
            email=user.email,
            log_user_emails=self.identities.settings.log_user_emails,
        )

    # Registration

    async def register(
        self,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
        status: UserStatus = UserStatus.WAITING,
    ) -> User:
        """Create a user identified by email."""
        return await self.identities.create_identity(
            status, email, "", password, first_name, last_name
        )

    async def register_mobile(
        self,
        mobile: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
        status: UserStatus = UserStatus.WAITING,
    ) -> User:
        """Create a user identified by mobile number."""
        return await self.identities.create_identity(
            status, "", mobile, password, first_name, last_name
        )

    # Password

    async def sign_in(
        self, email: str, password: str, option: LoginOption | None = None
    ) -> Session:
        """Sign in with email + password.

        With ``create_if_missing`` an unknown email is registered on the spot
        with the given password.
        """
        option = option or LoginOption()
        try:
            user = await self.identities.get_user_by_email(email)
        except EmailNotFoundError:
            if not option.create_if_missing:
                raise
            user = await self.register(email, password, option.first_name, option.last_name)
        else:
            self.credentials.verify_password(user.passwd, user.salt, password)

        self._bind(user)
        return await self.sessions.create_session(user, option.client_ip, option.client_agent)

    async def sign_in_mobile(
        self, mobile: str, password: str, option: LoginOption | None = None
    ) -> Session:
        """Sign in with mobile + password. See ``sign_in``."""
        option = option or LoginOption()
        try:
            user = await self.identities.get_user_by_mobile(mobile)
        except MobileNotFoundError:
            if not option.create_if_missing:
                raise
            user = await self.register_mobile(
                mobile, password, option.first_name, option.last_name
            )
        else:
            self.credentials.verify_password(user.passwd, user.salt, password)

        self._bind(user)
        return await self.sessions.create_session(user, option.client_ip, option.client_agent)

    # TOTP

    async def _sign_in_with_otp(
        self, user: User, otp: str, option: LoginOption | None
    ) -> Session:
        option = option or LoginOption()
        secret = await self.identities.get_otp_secret(user.id)
        self.credentials.verify_otp(secret, otp)

        self._bind(user)
        return await self.sessions.create_session(user, option.client_ip, option.client_agent)

    async def sign_in_with_otp(
        self, email: str, otp: str, option: LoginOption | None = None
    ) -> Session:
        user = await self.identities.get_user_by_email(email)
        return await self._sign_in_with_otp(user, otp, option)

    async def sign_in_mobile_with_otp(
        self, mobile: str, otp: str, option: LoginOption | None = None
    ) -> Session:
        user = await self.identities.get_user_by_mobile(mobile)
        return await self._sign_in_with_otp(user, otp, option)

    # Login codes

    async def create_login_code(self, email: str, option: LoginOption | None = None) -> str:
        """Issue a login code for an email identity.

        With ``create_if_missing`` an unknown email is registered with a
        random password first. Delivering the code is the caller's job.
        """
        option = option or LoginOption()
        try:
            user_id = await self.identities.get_user_id_by_email(email)
        except EmailNotFoundError:
            if not option.create_if_missing:
                raise
            user = await self.register(
                email,
                rand_string(GENERATED_PASSWORD_LENGTH, ALPHA_NUMBER),
                option.first_name,
                option.last_name,
            )
            user_id = user.id

        return await self.credentials.issue_login_code(user_id, option.client_ip)

    async def create_mobile_login_code(
        self, mobile: str, option: LoginOption | None = None
    ) -> str:
        """Issue a login code for a mobile identity. See ``create_login_code``."""
        option = option or LoginOption()
        try:
            user_id = await self.identities.get_user_id_by_mobile(mobile)
        except MobileNotFoundError:
            if not option.create_if_missing:
                raise
            user = await self.register_mobile(
                mobile,
                rand_string(GENERATED_PASSWORD_LENGTH, ALPHA_NUMBER),
                option.first_name,
                option.last_name,
            )
            user_id = user.id

        return await self.credentials.issue_login_code(user_id, option.client_ip)

    async def _sign_in_with_code(
        self, user: User, code: str, option: LoginOption | None
    ) -> Session:
        option = option or LoginOption()
        issued_ip = await self.credentials.verify_login_code(user.id, code)

        self._bind(user)
        return await self.sessions.create_session(
            user,
            option.client_ip or issued_ip,
            option.client_agent,
        )

    async def sign_in_with_code(
        self, email: str, code: str, option: LoginOption | None = None
    ) -> Session:
        user = await self.identities.get_user_by_email(email)
        return await self._sign_in_with_code(user, code, option)

    async def sign_in_mobile_with_code(
        self, mobile: str, code: str, option: LoginOption | None = None
    ) -> Session:
        user = await self.identities.get_user_by_mobile(mobile)
        return await self._sign_in_with_code(user, code, option)

    # Sessions

    async def refresh_session(
        self,
        refresh_token: str,
        client_ip: str | None = None,
        client_agent: str | None = None,
    ) -> Session:
        return await self.sessions.refresh_session(refresh_token, client_ip, client_agent)

    async def sign_out(self, user_id: int, refresh_token: str | None = None) -> int:
        return await self.sessions.sign_out(user_id, refresh_token)

    def is_authenticated(self, access_token: str) -> int:
        return self.sessions.is_authenticated(access_token)
