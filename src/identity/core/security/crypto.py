"""Cryptographic utilities - salted hashes, profile encryption, JWT tokens."""

import hashlib
import os
import secrets
import string
from datetime import UTC, datetime, timedelta
from hashlib import sha256
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from jose import JWTError, jwt

from src.identity.core.config import Settings

NONCE_SIZE = 12
SALT_LENGTH = 10

LETTERS = string.ascii_letters
ALPHA_NUMBER = string.ascii_letters + string.digits


class TokenType:
    """Token type constants."""

    ACCESS = "access"
    REFRESH = "refresh"


def rand_string(length: int, alphabet: str = LETTERS) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def rand_digits(length: int) -> str:
    return "".join(secrets.choice(string.digits) for _ in range(length))


def generate_salt() -> str:
    return rand_string(SALT_LENGTH)


def generate_hash(algorithm: str, source: str, salt: str = "") -> str:
    """Hex digest of ``source`` followed by ``salt`` using a hashlib algorithm."""
    h = hashlib.new(algorithm)
    h.update(source.encode())
    if salt:
        h.update(salt.encode())
    return h.hexdigest()


def verify_hash(algorithm: str, stored_hash: str, source: str, salt: str = "") -> bool:
    # Plain equality, not constant-time (known hardening gap)
    return generate_hash(algorithm, source, salt) == stored_hash


def hash_token(token: str) -> str:
    """Hash a token using SHA256 for secure storage."""
    return sha256(token.encode()).hexdigest()


def derive_aes_key(key: str) -> bytes:
    """Derive a 256-bit AES key from a configured passphrase."""
    return sha256(key.encode()).digest()


def encrypt_text(plain: bytes, key: bytes) -> str:
    """AES-GCM encrypt; returns hex of nonce (12) + ciphertext + tag (16)."""
    nonce = os.urandom(NONCE_SIZE)
    return (nonce + AESGCM(key).encrypt(nonce, plain, None)).hex()


def decrypt_text(cipher_text: str, key: bytes) -> bytes:
    """Reverse of ``encrypt_text``. Raises ValueError on malformed or forged input."""
    try:
        payload = bytes.fromhex(cipher_text)
    except ValueError as e:
        raise ValueError("Cipher text is not valid hex") from e
    if len(payload) <= NONCE_SIZE:
        raise ValueError("Cipher text is too short")

    nonce, body = payload[:NONCE_SIZE], payload[NONCE_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, body, None)
    except InvalidTag as e:
        raise ValueError("Cipher text failed authentication") from e


def create_access_token(
    settings: Settings,
    subject: int,
    expires_delta: timedelta | None = None,
) -> str:
    """Create JWT access token."""
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(seconds=settings.access_token_ttl_seconds))

    to_encode = {
        "sub": str(subject),
        "iat": now,
        "exp": expire,
        "type": TokenType.ACCESS,
    }
    return jwt.encode(  # type: ignore[no-any-return]
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def create_refresh_token(settings: Settings, subject: int) -> tuple[str, datetime]:
    """Create refresh token. Returns (token, expiry as naive UTC datetime).

    Includes a unique JWT ID (jti) so two tokens minted for the same user in the
    same second still hash differently.
    """
    now = datetime.now(UTC)
    expire = now + timedelta(seconds=settings.refresh_token_ttl_seconds)

    to_encode = {
        "sub": str(subject),
        "iat": now,
        "exp": expire,
        "type": TokenType.REFRESH,
        "jti": secrets.token_hex(16),
    }
    token: str = jwt.encode(  # type: ignore[assignment]
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return token, expire.replace(tzinfo=None)


def decode_token(settings: Settings, token: str) -> dict[str, Any] | None:
    """Decode and validate JWT token. Returns None on any error."""
    try:
        return jwt.decode(  # type: ignore[no-any-return]
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None
