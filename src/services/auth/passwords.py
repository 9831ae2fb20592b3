"""
Credential Hashing

Passwords are hashed with passlib (pbkdf2_sha256). Stores written by older
versions may still hold clear-text credentials; those verify with a
constant-time comparison and come back with a hash to store instead.
"""

import secrets
from typing import Optional

from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def is_password_hash(stored: str) -> bool:
    return pwd_context.identify(stored, required=False) is not None


def verify_password(password: str, stored: str) -> tuple[bool, Optional[str]]:
    """
    Check `password` against a stored credential.

    Returns:
        (matches, replacement) where `replacement` is a fresh hash to persist
        when the stored credential is clear text or outdated, else None.
    """
    if not is_password_hash(stored):
        matches = secrets.compare_digest(password.encode("utf-8"), stored.encode("utf-8"))
        return matches, (hash_password(password) if matches else None)
    return pwd_context.verify_and_update(password, stored)
