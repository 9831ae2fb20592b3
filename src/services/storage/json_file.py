"""
JSON File Storage Implementation

DESIGN DECISION: The store is a single JSON document on local disk.
Every save serializes the full collection to a temporary file in the same
directory, fsyncs it, then atomically replaces the live file. A crash mid-write
leaves either the old document or the new one, never a truncated file.
Readers therefore always see a complete document, so snapshots need no lock.
File I/O runs in the threadpool so the event loop keeps serving requests.

TRADEOFFS:
- Whole-document rewrites (fine for a single-process personal ledger)
- One writer at a time (enforced by DocumentStore.mutate)
"""

import json
import os
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Optional, Union

import structlog
from starlette.concurrency import run_in_threadpool
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.models.account import AccountCollection
from src.models.audit import AuditEvent
from src.services.storage.interface import (
    AuditStorageInterface,
    CorruptStoreError,
    DocumentStore,
    StoreUnavailableError,
)
from src.services.storage.migrations import load_collection

logger = structlog.get_logger(__name__)


def _io_retry(attempts: int):
    return retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        reraise=True,
    )


class JsonFileStore(DocumentStore):
    """
    Document store backed by one JSON file.

    A missing or empty file is an empty collection.
    """

    def __init__(
        self,
        path: Union[str, Path],
        default_monthly_budget: Decimal = Decimal("2000"),
        io_retry_attempts: int = 3,
    ):
        super().__init__()
        self._path = Path(path)
        self._default_monthly_budget = default_monthly_budget
        self._read_bytes = _io_retry(io_retry_attempts)(self._read_bytes_once)
        self._write_text = _io_retry(io_retry_attempts)(self._write_text_once)

    @property
    def path(self) -> Path:
        return self._path

    def _read_bytes_once(self) -> Optional[bytes]:
        try:
            return self._path.read_bytes()
        except FileNotFoundError:
            return None

    def _write_text_once(self, payload: str) -> None:
        """Write to a sibling temp file, then atomically swap it in."""
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.",
            suffix=".tmp",
            dir=directory,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    async def load(self) -> AccountCollection:
        try:
            raw = await run_in_threadpool(self._read_bytes)
        except OSError as e:
            raise StoreUnavailableError(f"Failed to read store {self._path}: {e}")

        if raw is None:
            return AccountCollection()

        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise CorruptStoreError(f"Store {self._path} is not valid UTF-8", cause=e)

        if not text.strip():
            return AccountCollection()

        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise CorruptStoreError(f"Store {self._path} is not valid JSON", cause=e)

        return load_collection(
            document,
            default_monthly_budget=self._default_monthly_budget,
        )

    async def save(self, collection: AccountCollection) -> None:
        payload = json.dumps(collection.to_document(), indent=2, ensure_ascii=False)
        try:
            await run_in_threadpool(self._write_text, payload)
        except OSError as e:
            raise StoreUnavailableError(f"Failed to write store {self._path}: {e}")
        logger.debug("store_saved", path=str(self._path), accounts=len(collection.users))


class JsonLinesAuditStorage(AuditStorageInterface):
    """
    Append-only audit log, one JSON object per line.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        reraise=True,
    )
    def _append_line(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            await run_in_threadpool(self._append_line, event.to_json_line())
            return True
        except OSError as e:
            # Audit logging should not break the main flow
            logger.error("audit_append_failed", error=str(e), event_id=str(event.event_id))
            return False
