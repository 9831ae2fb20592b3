"""Services package."""

from src.services.auth import (
    Session,
    SessionManager,
    hash_password,
    verify_password,
)
from src.services.storage import (
    AuditStorageInterface,
    CorruptStoreError,
    DocumentStore,
    InMemoryAuditStorage,
    InMemoryStore,
    JsonFileStore,
    JsonLinesAuditStorage,
    StorageError,
    StoreUnavailableError,
)

__all__ = [
    # Auth services
    "Session",
    "SessionManager",
    "hash_password",
    "verify_password",
    # Storage services
    "AuditStorageInterface",
    "CorruptStoreError",
    "DocumentStore",
    "InMemoryAuditStorage",
    "InMemoryStore",
    "JsonFileStore",
    "JsonLinesAuditStorage",
    "StorageError",
    "StoreUnavailableError",
]
