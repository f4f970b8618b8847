"""
Remote Sync Dispatcher

DESIGN DECISION: The local ledger is the source of truth; the remote
mirror is eventually consistent. A mutation never waits for the network:
the engine hands each changed record to the dispatcher, which sends it in
the background.

Guarantees:
- Operations reach the remote in the order they were pushed
- A failed operation is logged and audited; the ledger is never rolled back
- Pushes made outside a running event loop are queued until `flush()`
- An operation cancelled in flight counts as a failure and never
  stalls the operations after it
"""

import asyncio
import functools
from typing import TYPE_CHECKING, Any, Optional

import structlog

from shop_ledger.models.audit import AuditEventBuilder
from shop_ledger.models.ledger import LedgerRecord, SyncMode
from shop_ledger.services.storage.interface import RemoteSyncInterface

if TYPE_CHECKING:
    from shop_ledger.audit.logger import AuditLogger

logger = structlog.get_logger(__name__)

# (action, collection, payload); payload is a record dict or an id
SyncOperation = tuple[str, str, Any]


class SyncDispatcher:
    """Fire-and-forget, ordered delivery of ledger changes to the remote."""

    def __init__(
        self,
        remote: Optional[RemoteSyncInterface],
        mode: SyncMode = SyncMode.ACCOUNTING,
        audit_logger: Optional["AuditLogger"] = None,
    ):
        self._remote = remote
        self._mode = SyncMode(mode)
        self._audit = audit_logger
        self._queued: list[SyncOperation] = []
        self._tail: Optional[asyncio.Task] = None
        self.sent = 0
        self.failures = 0

    @property
    def enabled(self) -> bool:
        return self._remote is not None

    @property
    def mode(self) -> SyncMode:
        return self._mode

    @property
    def queued_count(self) -> int:
        return len(self._queued)

    def push_create(self, collection: str, record: LedgerRecord) -> None:
        self._dispatch(("create", collection, record.to_record()))

    def push_update(self, collection: str, record: LedgerRecord) -> None:
        self._dispatch(("update", collection, record.to_record()))

    def push_delete(self, collection: str, record_id: int) -> None:
        self._dispatch(("delete", collection, record_id))

    def _dispatch(self, operation: SyncOperation) -> None:
        if self._remote is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._queued.append(operation)
            return
        self._drain_queue(loop)
        self._schedule(loop, operation)

    def _drain_queue(self, loop: asyncio.AbstractEventLoop) -> None:
        queued, self._queued = self._queued, []
        for operation in queued:
            self._schedule(loop, operation)

    def _schedule(self, loop: asyncio.AbstractEventLoop, operation: SyncOperation) -> None:
        task = loop.create_task(self._run_after(self._live_tail(loop), operation))
        task.add_done_callback(functools.partial(self._on_done, operation))
        self._tail = task

    def _live_tail(self, loop: asyncio.AbstractEventLoop) -> Optional[asyncio.Task]:
        # A task left behind by a closed loop can never be awaited here
        if self._tail is not None and self._tail.get_loop() is not loop:
            self._tail = None
        return self._tail

    async def _run_after(
        self,
        previous: Optional[asyncio.Task],
        operation: SyncOperation,
    ) -> None:
        if previous is not None:
            # wait() does not re-raise the previous push's cancellation
            await asyncio.wait([previous])
        await self._send(operation)

    def _on_done(self, operation: SyncOperation, task: asyncio.Task) -> None:
        # Cancelled before or during the send
        if task.cancelled():
            self._record_failure(operation, "sync interrupted before completion")

    async def _send(self, operation: SyncOperation) -> None:
        action, collection, payload = operation
        try:
            if action == "create":
                await self._remote.create(collection, payload, self._mode)
            elif action == "update":
                await self._remote.update(collection, payload, self._mode)
            else:
                await self._remote.delete(collection, payload, self._mode)
            self.sent += 1
        except Exception as e:
            self._record_failure(operation, str(e))

    def _record_failure(self, operation: SyncOperation, error: str) -> None:
        action, collection, payload = operation
        entity_id = payload if action == "delete" else payload.get("id")
        self.failures += 1
        logger.error(
            "remote_sync_failed",
            action=action,
            collection=collection,
            entity_id=entity_id,
            error=error,
        )
        if self._audit:
            self._audit.log(
                AuditEventBuilder.sync_failed(action, collection, entity_id, error)
            )

    async def flush(self) -> None:
        """Send anything queued and wait for every in-flight operation."""
        if self._remote is None:
            return
        loop = asyncio.get_running_loop()
        self._drain_queue(loop)
        # New pushes may extend the chain while we wait
        while True:
            tail = self._live_tail(loop)
            if tail is None or tail.done():
                break
            await asyncio.wait([tail])
