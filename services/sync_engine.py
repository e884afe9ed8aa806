"""
Entry point used by the UI layer.
Wires the local store, pending-change queue, resolver and scheduler together
on top of an authenticated request pipeline.
"""

import time
import uuid
from datetime import date
from typing import Any, Callable, List, Mapping, Optional, Union

from models.errors import SyncError
from models.pending_queue import PendingChangeQueue
from models.reconciliation import ReconciliationResolver
from models.schemas import ExercisePatch, ExerciseRecord, GeneratedPlan, SyncStatus, UserProfile
from models.state_store import LocalStateStore
from services.auth_pipeline import AuthenticatedRequestPipeline
from services.remote_store import RemoteStoreClient
from services.sync_scheduler import SyncScheduler
from utils.logging_utils import logger
from utils.status_text import get_status_text

LOCAL_ID_PREFIX = "local-"


class WorkoutSyncEngine:
    """
    Optimistic workout tracking: edits land locally at once and are
    synced in the background, surviving offline periods and token expiry.
    """

    def __init__(self, pipeline: AuthenticatedRequestPipeline,
                 clock: Callable[[], float] = time.monotonic,
                 sync_interval: Optional[float] = None,
                 sync_max_attempts: Optional[int] = None):
        self.pipeline = pipeline
        self.remote = RemoteStoreClient(pipeline)
        self.queue = PendingChangeQueue(clock=clock)
        self.store = LocalStateStore(clock=clock)
        self.resolver = ReconciliationResolver(self.queue)
        self.scheduler = SyncScheduler(
            self.queue, self.store, self.resolver, self.remote,
            interval=sync_interval, max_attempts=sync_max_attempts,
        )
        self.auth_required = not pipeline.is_authenticated

        self.store.subscribe(self.queue.enqueue)
        pipeline.add_session_listener(self._on_session_invalidated)

    # ------------------------------------------------------------------
    # UI-facing operations
    # ------------------------------------------------------------------
    def track_change(self, exercise_id: str,
                     patch: Union[ExercisePatch, Mapping[str, Any]]) -> ExerciseRecord:
        """Apply an edit locally and queue it for sync; never waits on the network"""
        return self.store.apply_local_edit(exercise_id, patch)

    def get_sync_status(self) -> SyncStatus:
        status = SyncStatus(
            pendingCount=self.queue.pending_count,
            lastSyncAt=self.scheduler.last_sync_at,
            failedEntries=self.queue.failed_entries(),
            failureReasons=self.queue.failure_reasons(),
            inFlight=self.scheduler.in_flight,
            authRequired=self.auth_required,
        )
        status.message = get_status_text(status)
        return status

    async def force_sync(self) -> SyncStatus:
        await self.scheduler.flush()
        return self.get_sync_status()

    def notify_foreground(self):
        self.scheduler.trigger("foreground")

    def notify_reconnect(self):
        self.scheduler.trigger("reconnect")

    def add_failure_listener(self, listener: Callable[[SyncError], None]):
        self.scheduler.add_failure_listener(listener)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------
    async def login(self, email: str, password: str):
        await self.pipeline.login(email, password)
        self.auth_required = False
        self.scheduler.trigger("login")

    def logout(self):
        self.pipeline.logout()
        self.auth_required = True

    def _on_session_invalidated(self, reason: str):
        self.auth_required = True
        logger.warning(f"Re-authentication required: {reason}")

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    async def load_day(self, day: Union[date, str]) -> List[ExerciseRecord]:
        """Fetch a day from the remote store and reconcile it with local edits"""
        server_records = await self.remote.exercises_by_day(day)
        for server_record in server_records:
            local_record = self.store.get(server_record.exerciseId)
            self.store.put(self.resolver.merge(server_record, local_record))
        day_str = day.isoformat() if isinstance(day, date) else day
        logger.info(f"Loaded {len(server_records)} exercises for {day_str}")
        return [self.store.get(record.exerciseId) for record in server_records]

    async def generate_plan(self, profile: UserProfile) -> GeneratedPlan:
        plan = await self.remote.generate_plan(profile)
        self.populate_from_plan(plan)
        return plan

    def populate_from_plan(self, plan: GeneratedPlan) -> List[ExerciseRecord]:
        """Create local records from plan templates, with temporary ids where the plan has none"""
        records: List[ExerciseRecord] = []
        for plan_day in plan.days:
            known_names = {record.name for record in self.store.for_day(plan_day.day)}
            for exercise in plan_day.exercises:
                if exercise.exerciseId and self.store.get(exercise.exerciseId) is not None:
                    continue
                # Templates are consumed once per day; a repeated name is the same exercise
                if not exercise.exerciseId and exercise.name in known_names:
                    continue
                exercise_id = exercise.exerciseId or f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}"
                known_names.add(exercise.name)
                records.append(ExerciseRecord(
                    exerciseId=exercise_id,
                    name=exercise.name,
                    day=plan_day.day,
                    totalSets=exercise.sets,
                    totalReps=exercise.sets * exercise.reps,
                ))
        self.store.load(records)
        return records

    def exercises_for_day(self, day: str) -> List[ExerciseRecord]:
        return self.store.for_day(day)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self):
        self.scheduler.start()

    async def stop(self):
        await self.scheduler.stop()
        await self.pipeline.aclose()
