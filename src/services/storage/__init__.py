"""
Storage Services Package

Provides the abstract document store and its implementations.
The JSON file store is the production backend; the in-memory store
serves tests.
"""

from src.services.storage.interface import (
    AuditStorageInterface,
    CorruptStoreError,
    DocumentStore,
    StorageError,
    StoreUnavailableError,
)
from src.services.storage.json_file import JsonFileStore, JsonLinesAuditStorage
from src.services.storage.memory import InMemoryAuditStorage, InMemoryStore
from src.services.storage.migrations import load_collection, migrate

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DocumentStore",
    # Exceptions
    "CorruptStoreError",
    "StorageError",
    "StoreUnavailableError",
    # Implementations
    "InMemoryAuditStorage",
    "InMemoryStore",
    "JsonFileStore",
    "JsonLinesAuditStorage",
    # Migrations
    "load_collection",
    "migrate",
]
