import asyncio
import contextlib
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from config import config
from models.errors import Forbidden, Permanent, QueueOverflow, SyncError, Transient, Unauthorized
from models.pending_queue import PendingChangeQueue
from models.reconciliation import ReconciliationResolver
from models.schemas import ExerciseRecord, FlushReport, PendingUpdate
from models.state_store import LocalStateStore
from services.debug_service import debug_service
from services.remote_store import RemoteStoreClient
from utils.logging_utils import logger

FailureListener = Callable[[SyncError], None]

# Per-entry outcomes of a flush
ACKNOWLEDGED = "acknowledged"
RETRYING = "retrying"
FAILED = "failed"
DEFERRED = "deferred"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncScheduler:
    """
    Flushes the pending-change queue to the remote store.
    Runs periodically and on explicit triggers; entries for different exercises
    are sent concurrently, while an exercise already in flight is never sent twice.
    """

    def __init__(self, queue: PendingChangeQueue, store: LocalStateStore,
                 resolver: ReconciliationResolver, remote: RemoteStoreClient,
                 interval: Optional[float] = None, max_attempts: Optional[int] = None,
                 now: Callable[[], datetime] = _utcnow):
        self.queue = queue
        self.store = store
        self.resolver = resolver
        self.remote = remote
        self.interval = interval or config.sync_interval
        self.max_attempts = max_attempts or config.sync_max_attempts
        self._now = now

        self.last_sync_at: Optional[datetime] = None
        self.cycle = 0
        self._in_flight: Set[str] = set()
        self._failure_listeners: List[FailureListener] = []
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_failure_listener(self, listener: FailureListener):
        """Receives QueueOverflow, Permanent and Forbidden errors for parked entries"""
        self._failure_listeners.append(listener)

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------
    async def flush(self) -> FlushReport:
        """Send every syncable entry once and fold the outcomes into a report"""
        report = FlushReport()
        entries = self.queue.drain()
        if not entries:
            return report

        batch: List[PendingUpdate] = []
        for entry in entries:
            if entry.exerciseId in self._in_flight:
                report.skipped += 1
                continue
            self._in_flight.add(entry.exerciseId)
            batch.append(entry)

        if not batch:
            return report

        self.cycle += 1
        report.sent = len(batch)
        outcomes = await asyncio.gather(*(self._sync_entry(entry) for entry in batch))

        counts: Dict[str, int] = {}
        for outcome in outcomes:
            counts[outcome] = counts.get(outcome, 0) + 1
        report.acknowledged = counts.get(ACKNOWLEDGED, 0)
        report.retrying = counts.get(RETRYING, 0) + counts.get(DEFERRED, 0)
        report.failed = counts.get(FAILED, 0)

        if report.acknowledged:
            self.last_sync_at = self._now()

        logger.info(f"Sync cycle {self.cycle}: sent={report.sent} acknowledged={report.acknowledged} "
                    f"retrying={report.retrying} failed={report.failed} skipped={report.skipped}")
        debug_service.save_sync_snapshot(self.cycle, batch, report)
        return report

    async def _sync_entry(self, entry: PendingUpdate) -> str:
        exercise_id = entry.exerciseId
        try:
            server_record = await self.remote.update_exercise_status(exercise_id, entry.patch)
        except Transient as e:
            if not self._still_current(entry):
                # A newer edit replaced the failed patch and has not been sent yet
                return RETRYING
            attempts = self.queue.record_failure(exercise_id, e.message)
            if attempts >= self.max_attempts:
                self.queue.mark_failed(exercise_id, e.message)
                self._surface(QueueOverflow(exercise_id, attempts, e.message))
                return FAILED
            return RETRYING
        except (Permanent, Forbidden) as e:
            if not self._still_current(entry):
                # The rejected patch was superseded by a newer edit, which gets its own try
                return RETRYING
            self.queue.mark_failed(exercise_id, e.message)
            self._surface(e)
            return FAILED
        except Unauthorized as e:
            logger.warning(f"Sync for exercise {exercise_id} deferred until re-login: {e.message}")
            return DEFERRED
        finally:
            self._in_flight.discard(exercise_id)

        self._acknowledge(exercise_id, entry.patch, server_record)
        return ACKNOWLEDGED

    def _still_current(self, entry: PendingUpdate) -> bool:
        current = self.queue.get(entry.exerciseId)
        return current is not None and current.version == entry.version

    def _acknowledge(self, exercise_id: str, sent_patch: Dict, server_record: ExerciseRecord):
        self.queue.remove(exercise_id, sent_patch)

        # Temporary local ids are replaced by the persisted one
        if server_record.exerciseId != exercise_id:
            self.store.rekey(exercise_id, server_record.exerciseId)
            self.queue.rekey(exercise_id, server_record.exerciseId)

        local_record = self.store.get(server_record.exerciseId)
        self.store.put(self.resolver.merge(server_record, local_record))

    def _surface(self, error: SyncError):
        logger.warning(f"Sync failure surfaced: {error}")
        for listener in self._failure_listeners:
            listener(error)

    # ------------------------------------------------------------------
    # Periodic loop
    # ------------------------------------------------------------------
    def start(self):
        """Start the periodic flush loop on the running event loop"""
        if self.running:
            return
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Sync scheduler started (every {self.interval:.0f}s)")

    async def stop(self):
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Sync scheduler stopped")

    def trigger(self, reason: str = "manual"):
        """Wake the loop early, e.g. on app foregrounding or network reconnect"""
        logger.info(f"Sync triggered by {reason}")
        if self._wake is not None:
            self._wake.set()

    async def _run(self):
        while True:
            try:
                await self.flush()
            except Exception as e:
                logger.error(f"Error in sync cycle: {e}")

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
