"""Security utilities - hashing, encryption, tokens and one-time passwords.

Re-exports all security-related functions for convenience.
"""

from src.identity.core.security.crypto import (
    ALPHA_NUMBER,
    TokenType,
    create_access_token,
    create_refresh_token,
    decode_token,
    decrypt_text,
    derive_aes_key,
    encrypt_text,
    generate_hash,
    generate_salt,
    hash_token,
    rand_digits,
    rand_string,
    verify_hash,
)
from src.identity.core.security.otp import generate_otp_secret, provisioning_uri, verify_otp

__all__ = [
    # Crypto
    "ALPHA_NUMBER",
    "TokenType",
    "create_access_token",
    "create_refresh_token",
    "decode_token",
    "decrypt_text",
    "derive_aes_key",
    "encrypt_text",
    "generate_hash",
    "generate_salt",
    "hash_token",
    "rand_digits",
    "rand_string",
    "verify_hash",
    # One-time passwords
    "generate_otp_secret",
    "provisioning_uri",
    "verify_otp",
]
