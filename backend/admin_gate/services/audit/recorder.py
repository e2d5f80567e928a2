"""
Fire-and-forget audit recording.

Contract of ``AuditRecorder.record``:
- returns immediately, never raises
- the write runs as a detached task; its outcome, success or failure, is
  retrieved and discarded at this boundary
- no retry, no read-back

Audit completeness is best-effort. Durability belongs to the store.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from typing import Any, AsyncIterator, Protocol

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...crud.audit_log import AuditLogRepository
from ...errors import AppError
from ...schemas.audit_log import AuditLogEntry

logger = logging.getLogger("admin_gate.audit")

OPTIONAL_FIELDS = (
    "api_key_id",
    "error_code",
    "error_message",
    "request_body",
    "processing_time_ms",
)


class AuditLogStore(Protocol):
    async def insert(self, row: dict[str, Any]) -> None: ...


def build_insert(entry: AuditLogEntry) -> dict[str, Any]:
    """Store row for ``entry`` with an explicit None for every absent optional field."""
    row = entry.model_dump()
    for name in OPTIONAL_FIELDS:
        row.setdefault(name, None)
    return row


class SqlAlchemyAuditLogStore:
    """Inserts each row in its own session so audit commits never touch the caller's transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def insert(self, row: dict[str, Any]) -> None:
        async with self._session_factory() as session:
            await AuditLogRepository(session).create(**row)


class AuditRecorder:
    def __init__(self, store: AuditLogStore):
        self.store = store
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def record(self, entry: AuditLogEntry) -> None:
        """Schedule the write for ``entry`` and return at once."""
        try:
            if self._closed:
                logger.debug("Audit recorder closed, dropping action=%s", entry.action)
                return
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("No running event loop, dropping action=%s", entry.action)
                return
            task = loop.create_task(self._write(build_insert(entry)))
            self._tasks.add(task)
            task.add_done_callback(self._discard)
        except Exception:  # noqa: BLE001
            # Nothing may escape into the audited action.
            logger.debug("Audit dispatch failed action=%s", entry.action, exc_info=True)

    async def _write(self, row: dict[str, Any]) -> None:
        await self.store.insert(row)

    def _discard(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Audit write failed and was discarded error=%s", exc)

    async def drain(self) -> None:
        """Wait for every outstanding write to settle. Failures stay discarded."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await asyncio.sleep(0)

    async def aclose(self) -> None:
        """Stop accepting entries and cancel outstanding writes."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError, Exception):
                await task
        self._tasks.clear()


class AuditContext:
    """Mutable outcome of an audited block, turned into one AuditLogEntry on exit."""

    def __init__(self) -> None:
        self.success = True
        self.http_status = 200
        self.error_code: str | None = None
        self.error_message: str | None = None

    def fail(self, http_status: int, error_code: str | None = None, error_message: str | None = None) -> None:
        self.success = False
        self.http_status = http_status
        self.error_code = error_code
        self.error_message = error_message


@asynccontextmanager
async def audited(
    recorder: AuditRecorder,
    *,
    user_id: str,
    ip_address: str,
    action: str,
    api_key_id: str | None = None,
    request_body: Any | None = None,
) -> AsyncIterator[AuditContext]:
    """Time the wrapped block and record one entry when it exits.

    Exceptions from the block are recorded as failures and re-raised.
    """
    context = AuditContext()
    started = time.perf_counter()
    try:
        yield context
    except AppError as exc:
        context.fail(exc.status_code, exc.code, exc.message)
        raise
    except Exception as exc:
        context.fail(500, "INTERNAL_ERROR", str(exc) or exc.__class__.__name__)
        raise
    finally:
        try:
            entry = AuditLogEntry(
                user_id=user_id,
                api_key_id=api_key_id,
                ip_address=ip_address,
                action=action,
                success=context.success,
                http_status=context.http_status,
                error_code=context.error_code,
                error_message=context.error_message,
                request_body=request_body,
                processing_time_ms=int((time.perf_counter() - started) * 1000),
            )
        except PydanticValidationError as exc:
            logger.warning("Audit entry rejected action=%s error=%s", action, exc)
        else:
            recorder.record(entry)
