import hashlib
from functools import lru_cache

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="IDENTITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # App
    app_env: str = "development"  # development, testing, production
    debug: bool = False
    log_level: str = "INFO"

    # Security
    log_user_emails: bool = False  # Set to False in production for GDPR compliance

    # Shards (index in the list is the shard number encoded in user ids)
    shard_urls: list[str]
    database_pool_size: int = 5
    database_max_overflow: int = 10
    table_prefix: str = ""

    # Routing rings for contact indices
    email_ring: str = "auth:email"
    mobile_ring: str = "auth:mobile"
    ring_nodes: dict[str, list[int]] = {}  # ring name -> shard numbers, missing => all shards
    ring_replicas: int = 64

    # ID generator
    worker_id: int = 0

    # Credentials
    password_hash_algorithm: str = "sha256"
    profile_encryption_key: str | None = None  # If not set, profiles are stored in clear
    totp_issuer: str = "Identity"
    totp_account_name: str = "Auth"
    totp_valid_window: int = 1
    login_code_length: int = 6
    login_code_ttl_seconds: int = 60

    # Tokens
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    access_token_ttl_seconds: int = 60
    refresh_token_ttl_seconds: int = 3600

    # Shutdown
    background_drain_timeout: float = 5.0

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        if v == "change-this-to-a-secure-random-string":
            raise ValueError(
                "JWT_SECRET_KEY must be changed from default value. "
                "Generate a secure secret with: openssl rand -hex 32"
            )
        if len(v) < 32:
            raise ValueError("JWT_SECRET_KEY must be at least 32 characters")
        return v

    @field_validator("shard_urls")
    @classmethod
    def validate_shard_urls(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("At least one shard URL is required")
        if len(v) > 1024:
            raise ValueError("At most 1024 shards can be encoded in a user id")
        return v

    @field_validator("table_prefix")
    @classmethod
    def normalize_table_prefix(cls, v: str) -> str:
        if v and not v.endswith("_"):
            return v + "_"
        return v

    @field_validator("password_hash_algorithm")
    @classmethod
    def validate_hash_algorithm(cls, v: str) -> str:
        if v not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported hash algorithm '{v}'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level '{v}'")
        return level

    @field_validator(
        "access_token_ttl_seconds",
        "refresh_token_ttl_seconds",
        "login_code_ttl_seconds",
        "login_code_length",
    )
    @classmethod
    def validate_positive(cls, v: int, info: ValidationInfo) -> int:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be greater than zero")
        return v

    @field_validator("worker_id")
    @classmethod
    def validate_worker_id(cls, v: int) -> int:
        if not 0 <= v <= 3:
            raise ValueError("worker_id must be between 0 and 3")
        return v

    def ring_shards(self, ring_name: str) -> list[int]:
        """Shard numbers participating in a routing ring."""
        nodes = self.ring_nodes.get(ring_name)
        if nodes:
            return list(nodes)
        return list(range(len(self.shard_urls)))


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
