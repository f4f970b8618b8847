"""
Main Orchestrator for Shop Ledger

Wires the ledger engine to its collaborators and defines the session flow:
1. Load (remote mirror → fall back to local snapshot → seed default safes)
2. Mutate (engine operations; each commit is persisted locally and pushed)
3. Sync (wait for pending pushes and audit writes)

DESIGN DECISION: The local snapshot is written after every committed
change, so a crash or a dead network never loses the session's work.
The remote mirror is best effort.
"""

from typing import Optional

import structlog
from pydantic import ValidationError

from shop_ledger.audit import AuditLogger, configure_logging, create_correlation_id
from shop_ledger.config import get_settings
from shop_ledger.engine import IdGenerator, LedgerEngine
from shop_ledger.exceptions import LedgerError
from shop_ledger.models.audit import AuditEventBuilder
from shop_ledger.models.ledger import COLLECTIONS, LedgerSnapshot, SyncMode
from shop_ledger.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRemoteSync,
    InMemoryStore,
    JsonFileStore,
    LocalStoreInterface,
    RemoteSyncInterface,
    StorageError,
)
from shop_ledger.services.sync import SyncDispatcher
from shop_ledger.validation import LedgerValidator

logger = structlog.get_logger(__name__)

SNAPSHOT_KEY = "ledger"


class LedgerSession:
    """
    One panel's ledger for the lifetime of the application.

    Flow:
    1. `await load()` builds the engine from the best available data
    2. Use `session.engine` for every mutation
    3. `await sync()` before shutting down
    """

    def __init__(
        self,
        mode: SyncMode = SyncMode.ACCOUNTING,
        remote: Optional[RemoteSyncInterface] = None,
        local_store: Optional[LocalStoreInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
        default_safe_names: Optional[list[str]] = None,
        id_generator: Optional[IdGenerator] = None,
    ):
        self._mode = SyncMode(mode)
        self._remote = remote
        self._local = local_store or InMemoryStore()
        self._audit = audit_logger or AuditLogger()
        self._validator = validator
        self._default_safe_names = default_safe_names
        self._id_generator = id_generator
        self._dispatcher = SyncDispatcher(remote, self._mode, self._audit)
        self._engine: Optional[LedgerEngine] = None
        self.source: Optional[str] = None

    @property
    def mode(self) -> SyncMode:
        return self._mode

    @property
    def dispatcher(self) -> SyncDispatcher:
        return self._dispatcher

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit

    @property
    def engine(self) -> LedgerEngine:
        if self._engine is None:
            raise LedgerError("Ledger not loaded; call load() first")
        return self._engine

    async def load(self) -> LedgerEngine:
        """
        Build the engine.

        Reads the remote mirror; if it cannot be reached, uses the last
        local snapshot. Seeds the default safes when the ledger has none.
        """
        correlation_id = create_correlation_id()
        snapshot, self.source = await self._fetch()

        engine = LedgerEngine(
            snapshot,
            dispatcher=self._dispatcher,
            audit_logger=self._audit,
            validator=self._validator,
            id_generator=self._id_generator,
        )

        if not engine.safes:
            names = self._default_safe_names
            if names is None:
                names = get_settings().app.default_safe_names_list
            for name in names:
                engine.add_safe(name)
            self._audit.log(AuditEventBuilder.default_safes_seeded(names, correlation_id))

        engine.subscribe(self._persist)
        self._persist(engine.snapshot())
        self._engine = engine

        self._audit.log(AuditEventBuilder.data_loaded(
            self.source,
            {name: len(getattr(snapshot, name)) for name in COLLECTIONS},
            correlation_id,
        ))
        return engine

    async def _fetch(self) -> tuple[LedgerSnapshot, str]:
        if self._remote is not None:
            try:
                return await self._remote.fetch_all(self._mode), "remote"
            except StorageError as e:
                logger.warning("remote_fetch_failed", mode=self._mode.value, error=str(e))

        stored = self._local.get(SNAPSHOT_KEY)
        if stored:
            try:
                return LedgerSnapshot.model_validate(stored), "local"
            except ValidationError as e:
                logger.error("local_snapshot_invalid", error=str(e))
        return LedgerSnapshot(), "empty"

    def _persist(self, snapshot: LedgerSnapshot) -> None:
        try:
            self._local.set(SNAPSHOT_KEY, snapshot.to_records())
        except StorageError as e:
            logger.error("local_persist_failed", error=str(e))

    async def sync(self) -> None:
        """Wait for queued remote pushes, then write pending audit events."""
        await self._dispatcher.flush()
        written = await self._audit.flush()
        logger.info(
            "session_synced",
            sent=self._dispatcher.sent,
            failures=self._dispatcher.failures,
            audit_events_written=written,
        )


def create_app_components(
    use_storage: bool = True,
    mode: Optional[SyncMode] = None,
) -> LedgerSession:
    """
    Factory function to create the ledger session from settings.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for a local-only ledger.
        mode: Panel to load; defaults to the configured sync mode.

    Returns:
        An unloaded LedgerSession
    """
    settings = get_settings()
    app = settings.app
    configure_logging(app.log_level)
    mode = SyncMode(mode or app.sync_mode)

    local_store = JsonFileStore(settings.local_store.path_for(mode.value))
    remote = None
    audit_logger = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            remote = GoogleSheetsRemoteSync(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue local-only
            logger.warning("storage_not_configured", error=str(e))
            remote = None
            audit_logger = None

    return LedgerSession(
        mode=mode,
        remote=remote,
        local_store=local_store,
        audit_logger=audit_logger or AuditLogger(),
        default_safe_names=app.default_safe_names_list,
    )
