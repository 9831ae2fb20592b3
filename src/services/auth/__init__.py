"""Authentication services package: session table and credential hashing."""

from src.services.auth.passwords import hash_password, is_password_hash, verify_password
from src.services.auth.sessions import Session, SessionManager

__all__ = [
    "Session",
    "SessionManager",
    "hash_password",
    "is_password_hash",
    "verify_password",
]
