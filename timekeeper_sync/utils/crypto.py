"""Cryptographic utilities for personal access token encryption."""

from functools import lru_cache
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import base64

__all__ = ["InvalidToken", "generate_key", "encrypt_token", "decrypt_token"]


@lru_cache(maxsize=8)
def generate_key(password: str, salt: bytes) -> bytes:
    """Derive a Fernet key from a password.

    The salt must be stable across processes or previously stored tokens
    can no longer be decrypted.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=100000,
    )
    return base64.urlsafe_b64encode(kdf.derive(password.encode()))


def encrypt_token(token: str, encryption_key: str, salt: str) -> str:
    """Encrypt a personal access token."""
    f = Fernet(generate_key(encryption_key, salt.encode()))
    return f.encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str, encryption_key: str, salt: str) -> str:
    """Decrypt a personal access token.

    Raises:
        InvalidToken: wrong key or salt, or the value was never encrypted
    """
    f = Fernet(generate_key(encryption_key, salt.encode()))
    return f.decrypt(encrypted_token.encode()).decode()
