"""Sync execution shared by the HTTP API and the scheduler.

Resolves a tenant's configuration and credentials, builds the adapters,
persists a SyncRun record around the orchestrator and offers a buffered and a
streaming way of running it.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import httpx
from sqlalchemy.orm import Session

from app.models import SyncConfig, SyncRun, SyncRunStatus
from app.models.base import SessionLocal
from app.services.ado_client import AdoClient
from app.services.errors import ConfigurationError, SyncAlreadyRunningError
from app.services.events import Event, EventSink, QueueEventSink
from app.services.mapping import MappingRules
from app.services.notion_client import NotionClient
from app.services.oauth import resolve_token
from app.services.sync_service import SyncService
from app.services.sync_types import SyncDirection, SyncErrorEntry, SyncRunResult

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Sync cancelled"


@dataclass
class SyncOptions:
    direction: SyncDirection = SyncDirection.BOTH
    dry_run: bool = False
    limit: Optional[int] = None


_tenant_locks: Dict[str, threading.Lock] = {}
_tenant_locks_guard = threading.Lock()


def _tenant_lock(tenant_id: str) -> threading.Lock:
    with _tenant_locks_guard:
        lock = _tenant_locks.get(tenant_id)
        if lock is None:
            lock = threading.Lock()
            _tenant_locks[tenant_id] = lock
        return lock


def is_running(tenant_id: str) -> bool:
    return _tenant_lock(tenant_id).locked()


def resolve_config(db: Session, tenant_id: str) -> SyncConfig:
    """Load the tenant's config, failing with a specific message for each missing piece"""
    config = db.query(SyncConfig).filter(SyncConfig.tenant_id == tenant_id).first()
    if config is None:
        raise ConfigurationError(
            "Sync configuration not found. Please configure your sync settings first."
        )
    if not config.notion_token:
        raise ConfigurationError(
            "Notion token not configured. Please add your Notion integration token."
        )
    if (config.ado_auth_type or "pat") == "pat" and not config.ado_pat:
        raise ConfigurationError(
            "ADO Personal Access Token not configured. Please add your ADO PAT."
        )
    if not config.ado_org_url:
        raise ConfigurationError(
            "ADO Organization URL not configured. Please add your ADO org URL."
        )
    if not config.ado_project:
        raise ConfigurationError("ADO project not configured. Please select an ADO project.")
    if not config.notion_database_ids:
        raise ConfigurationError("No Notion database selected. Please select at least one database.")
    return config


def build_adapters(
    config: SyncConfig,
    access_token: Optional[str] = None,
    transport: Optional[httpx.BaseTransport] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Tuple[NotionClient, AdoClient, MappingRules]:
    rules = MappingRules.from_config(config)
    source = NotionClient(
        config.notion_token,
        list(config.notion_database_ids or []),
        rules,
        transport=transport,
        cancel_event=cancel_event,
    )
    target = AdoClient(
        config.ado_org_url,
        config.ado_project,
        rules,
        pat=None if access_token else config.ado_pat,
        access_token=access_token,
        transport=transport,
        cancel_event=cancel_event,
    )
    return source, target, rules


def _close(adapter: Any) -> None:
    close = getattr(adapter, "close", None)
    if callable(close):
        close()


class SyncStream:
    """Handle on a run executing in a worker thread"""

    def __init__(self, sink: QueueEventSink, cancel_event: threading.Event, thread: threading.Thread):
        self._sink = sink
        self._cancel_event = cancel_event
        self._thread = thread
        self._finished = False

    def next_event(self) -> Optional[Event]:
        """Block until the next event; None once the run has finished."""
        if self._finished:
            return None
        event = self._sink.queue.get()
        if event is None:
            self._finished = True
        return event

    def events(self) -> Iterator[Event]:
        while True:
            event = self.next_event()
            if event is None:
                return
            yield event

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)


class SyncRunner:
    """Runs syncs for tenants; at most one run per tenant at a time"""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        adapter_factory: Callable[..., Tuple[Any, Any, MappingRules]] = build_adapters,
        token_resolver: Callable[[Session, str], str] = resolve_token,
        item_delay_seconds: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.adapter_factory = adapter_factory
        self.token_resolver = token_resolver
        self.item_delay_seconds = item_delay_seconds

    def _acquire(self, tenant_id: str) -> threading.Lock:
        lock = _tenant_lock(tenant_id)
        if not lock.acquire(blocking=False):
            raise SyncAlreadyRunningError(f"A sync is already running for tenant {tenant_id}")
        return lock

    def run(self, tenant_id: str, options: Optional[SyncOptions] = None) -> SyncRunResult:
        """Run to completion and return the full result"""
        lock = self._acquire(tenant_id)
        try:
            return self._execute(tenant_id, options or SyncOptions(), EventSink(), threading.Event())
        finally:
            lock.release()

    def stream(self, tenant_id: str, options: Optional[SyncOptions] = None) -> SyncStream:
        """Start a run in a worker thread and return a handle to its event stream"""
        lock = self._acquire(tenant_id)
        sink = QueueEventSink()
        cancel_event = threading.Event()
        opts = options or SyncOptions()

        def worker():
            try:
                self._execute(tenant_id, opts, sink, cancel_event)
            except Exception as e:
                # Already reported to the consumer as an error event.
                logger.error(f"Streaming sync for tenant {tenant_id} failed: {e}")
            finally:
                lock.release()
                sink.close()

        thread = threading.Thread(target=worker, name=f"sync-{tenant_id}", daemon=True)
        try:
            thread.start()
        except Exception:
            lock.release()
            raise
        return SyncStream(sink, cancel_event, thread)

    def _execute(
        self,
        tenant_id: str,
        options: SyncOptions,
        sink: EventSink,
        cancel_event: threading.Event,
    ) -> SyncRunResult:
        direction = SyncDirection(options.direction)
        db = self.session_factory()
        try:
            config = resolve_config(db, tenant_id)
            access_token = None
            if config.ado_auth_type == "oauth":
                access_token = self.token_resolver(db, tenant_id)
            source, target, rules = self.adapter_factory(config, access_token, cancel_event=cancel_event)

            run = SyncRun(
                tenant_id=tenant_id,
                direction=direction.value,
                dry_run=options.dry_run,
                status=SyncRunStatus.RUNNING,
            )
            db.add(run)
            db.commit()
            logger.info(
                f"Starting sync run {run.id} for tenant {tenant_id} "
                f"(direction={direction.value}, dry_run={options.dry_run}, limit={options.limit})"
            )

            service = SyncService(
                source,
                target,
                rules,
                sink=sink,
                item_delay_seconds=self.item_delay_seconds,
                cancel_event=cancel_event,
            )
            try:
                result = service.run(direction, options.dry_run, options.limit)
            except Exception as e:
                logger.error(f"Sync run {run.id} for tenant {tenant_id} failed: {e}")
                self._store(
                    run,
                    service.result,
                    SyncRunStatus.FAILED,
                    errors=[{"source_id": "", "title": "Sync Error", "message": str(e)}],
                )
                db.commit()
                raise
            finally:
                _close(source)
                _close(target)

            result.run_id = run.id
            if result.cancelled:
                result.errors.append(SyncErrorEntry("", CANCELLED_MESSAGE, "Run cancelled before completion"))
                self._store(run, result, SyncRunStatus.FAILED)
                db.commit()
                logger.info(f"Sync run {run.id} for tenant {tenant_id} cancelled")
                sink.error(CANCELLED_MESSAGE)
                return result

            self._store(run, result, SyncRunStatus.COMPLETED)
            db.commit()
            logger.info(f"Sync run {run.id} for tenant {tenant_id} completed: {result.counts()}")
            sink.complete(run.id, result.counts())
            return result
        except Exception as e:
            sink.error(str(e))
            raise
        finally:
            db.close()

    @staticmethod
    def _store(
        run: SyncRun,
        result: SyncRunResult,
        status: SyncRunStatus,
        errors: Optional[List[Dict[str, str]]] = None,
    ) -> None:
        run.created = result.created
        run.updated_target = result.updated_target
        run.updated_source = result.updated_source
        run.skipped = result.skipped
        run.errors = errors if errors is not None else [e.to_dict() for e in result.errors]
        run.error_count = len(run.errors)
        run.logs = list(result.logs)
        run.status = status
        run.completed_at = datetime.utcnow()


sync_runner = SyncRunner()
