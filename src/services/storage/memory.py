"""
In-Memory Storage

Used by tests and throwaway runs. The collection is kept as a serialized
document so every load goes through the same migration and validation
path as the file store, and callers never share objects with the store.
"""

import asyncio
import copy
from decimal import Decimal
from typing import Any, Optional

from src.models.account import AccountCollection
from src.models.audit import AuditEvent
from src.services.storage.interface import AuditStorageInterface, DocumentStore
from src.services.storage.migrations import load_collection


class InMemoryStore(DocumentStore):
    """
    Document store held in process memory.

    load/save yield to the event loop, the way real I/O would,
    so interleavings between concurrent operations are exercised.
    """

    def __init__(
        self,
        document: Optional[Any] = None,
        default_monthly_budget: Decimal = Decimal("2000"),
    ):
        super().__init__()
        self._document = copy.deepcopy(document) if document is not None else None
        self._default_monthly_budget = default_monthly_budget
        self.save_count = 0

    @property
    def document(self) -> Optional[Any]:
        """Deep copy of the currently stored raw document."""
        return copy.deepcopy(self._document)

    async def load(self) -> AccountCollection:
        await asyncio.sleep(0)
        if self._document is None:
            return AccountCollection()
        return load_collection(
            copy.deepcopy(self._document),
            default_monthly_budget=self._default_monthly_budget,
        )

    async def save(self, collection: AccountCollection) -> None:
        await asyncio.sleep(0)
        self._document = collection.to_document()
        self.save_count += 1


class InMemoryAuditStorage(AuditStorageInterface):
    """Audit storage kept in a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True
