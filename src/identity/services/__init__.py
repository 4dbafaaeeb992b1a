from src.identity.services.auth_service import AuthService
from src.identity.services.credential_service import CredentialService
from src.identity.services.identity_service import IdentityService
from src.identity.services.saga import SagaCoordinator
from src.identity.services.session_service import SessionService

__all__ = [
    "AuthService",
    "CredentialService",
    "IdentityService",
    "SagaCoordinator",
    "SessionService",
]
