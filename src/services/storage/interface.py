"""
Abstract Storage Interface

DESIGN DECISION: The whole account collection lives in one document that is
loaded and saved as a unit. Backends only implement `load` and `save`;
the base class owns the write discipline:

- `mutate()` holds a single store-wide lock for the whole
  load -> validate -> mutate -> save cycle, so two concurrent operations
  can never both read a stale balance.
- If the body of `mutate()` raises, nothing is saved.
- `snapshot()` reads without the lock; backends must guarantee a reader
  never observes a partially written document.
- `locked_snapshot()` reads under the lock and never saves; nothing can
  commit while its body runs.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from src.models.account import AccountCollection
from src.models.audit import AuditEvent


class DocumentStore(ABC):
    """
    Abstract interface for the account document store.

    Any storage implementation (JSON file, in-memory, etc.)
    must implement `load` and `save`.
    """

    def __init__(self):
        self._write_lock = asyncio.Lock()

    @abstractmethod
    async def load(self) -> AccountCollection:
        """
        Load and normalize the full account collection.

        Raises:
            CorruptStoreError: If the stored bytes cannot be parsed
            StoreUnavailableError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def save(self, collection: AccountCollection) -> None:
        """
        Replace the stored collection with `collection`.

        Must be all-or-nothing from the caller's perspective.

        Raises:
            StoreUnavailableError: If the backend cannot be written
        """
        pass

    async def snapshot(self) -> AccountCollection:
        """Consistent read-only copy of the collection."""
        return await self.load()

    @asynccontextmanager
    async def mutate(self) -> AsyncIterator[AccountCollection]:
        """
        Exclusive read-modify-write transaction.

        Usage:
            async with store.mutate() as collection:
                ...  # raise to abort, fall through to commit
        """
        async with self._write_lock:
            collection = await self.load()
            yield collection
            await self.save(collection)

    @asynccontextmanager
    async def locked_snapshot(self) -> AsyncIterator[AccountCollection]:
        """
        Read-only view held under the write lock.

        Usage:
            async with store.locked_snapshot() as collection:
                ...  # no other transaction commits until the block exits
        """
        async with self._write_lock:
            yield await self.load()


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class CorruptStoreError(StorageError):
    """Stored document cannot be parsed or normalized."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause


class StoreUnavailableError(StorageError):
    """Backend could not be read or written."""
    pass
