# state_store.py
"""
Local view of the training day's exercises.
User edits are applied here synchronously and forwarded to listeners
(the pending-change queue), so the UI never waits on the network.
"""

import math
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from models.errors import ValidationFailure
from models.schemas import ExercisePatch, ExerciseRecord
from utils.logging_utils import logger

ChangeListener = Callable[[str, Dict[str, Any]], None]


def compute_complete_percent(completed_reps: int, total_reps: int, completed_by_user: bool) -> int:
    """
    Derive completePercent from reps, rounding half up.
    An explicit completedByUser flag (sets-based completion) always wins with 100.
    """
    if completed_by_user:
        return 100
    if total_reps <= 0:
        return 0
    return min(100, int(math.floor(100 * completed_reps / total_reps + 0.5)))


class LocalStateStore:
    """
    Holds ExerciseRecords keyed by exerciseId.
    Only apply_local_edit notifies listeners; put/load are used for server state.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._records: Dict[str, ExerciseRecord] = {}
        self._listeners: List[ChangeListener] = []
        self._clock = clock

    def subscribe(self, listener: ChangeListener):
        """Register a callback receiving (exercise_id, normalized_patch) for each local edit"""
        self._listeners.append(listener)

    def load(self, records: Iterable[ExerciseRecord]):
        """Populate the store with records, replacing any with the same id"""
        for record in records:
            self._records[record.exerciseId] = record.model_copy()

    def get(self, exercise_id: str) -> Optional[ExerciseRecord]:
        record = self._records.get(exercise_id)
        return record.model_copy() if record else None

    def put(self, record: ExerciseRecord):
        self._records[record.exerciseId] = record.model_copy()

    def for_day(self, day: str) -> List[ExerciseRecord]:
        return [record.model_copy() for record in self._records.values() if record.day == day]

    def rekey(self, old_id: str, new_id: str):
        """Move a record from its temporary id to the id the server assigned"""
        record = self._records.pop(old_id, None)
        if record is None:
            return
        self._records[new_id] = record.model_copy(update={"exerciseId": new_id})
        logger.info(f"Exercise {old_id} persisted as {new_id}")

    def apply_local_edit(self, exercise_id: str,
                         patch: Union[ExercisePatch, Mapping[str, Any]]) -> ExerciseRecord:
        """
        Validate and apply a user edit, clamping counts to the exercise totals.
        Returns the updated record; raises ValidationFailure without touching state.
        """
        record = self._records.get(exercise_id)
        if record is None:
            raise ValidationFailure(f"Unknown exercise: {exercise_id}")

        changes = self._validate(patch)

        updates: Dict[str, Any] = {}
        if "completedSets" in changes:
            updates["completedSets"] = min(changes["completedSets"], record.totalSets)
        if "completedReps" in changes:
            updates["completedReps"] = min(changes["completedReps"], record.totalReps)
        if "completedByUser" in changes:
            updates["completedByUser"] = changes["completedByUser"]

        completed_reps = updates.get("completedReps", record.completedReps)
        completed_by_user = updates.get("completedByUser", record.completedByUser)
        updates["completePercent"] = compute_complete_percent(
            completed_reps, record.totalReps, completed_by_user
        )

        updated = record.model_copy(update={**updates, "lastModifiedAt": self._clock()})
        self._records[exercise_id] = updated

        for listener in self._listeners:
            listener(exercise_id, dict(updates))

        return updated.model_copy()

    @staticmethod
    def _validate(patch: Union[ExercisePatch, Mapping[str, Any]]) -> Dict[str, Any]:
        if not isinstance(patch, ExercisePatch):
            try:
                patch = ExercisePatch.model_validate(dict(patch))
            except (ValidationError, TypeError, ValueError) as e:
                raise ValidationFailure(f"Invalid exercise patch: {e}") from e

        changes = patch.model_dump(exclude_none=True)
        if not changes:
            raise ValidationFailure("Exercise patch is empty")
        return changes
