# pending_queue.py
"""
Ordered log of local changes not yet acknowledged by the remote store.
Keyed by exerciseId: a second edit to the same exercise is merged into the
existing entry instead of appended, so the queue never grows beyond the
number of distinct exercises touched since the last successful flush.
"""

import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from models.schemas import PendingUpdate
from utils.logging_utils import logger


class PendingChangeQueue:
    """
    In-memory, session-scoped pending-change log.
    Entries leave the queue only through remove() after the server acknowledged
    exactly the patch that is still stored.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, PendingUpdate] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, exercise_id: object) -> bool:
        return exercise_id in self._entries

    @property
    def pending_count(self) -> int:
        """Entries still eligible for automatic sync"""
        return sum(1 for entry in self._entries.values() if not entry.failed)

    def enqueue(self, exercise_id: str, patch: Mapping[str, Any]) -> PendingUpdate:
        """Merge a patch field by field (last write wins) and reset the retry counter"""
        entry = self._entries.get(exercise_id)
        if entry is None:
            entry = PendingUpdate(
                exerciseId=exercise_id,
                patch=dict(patch),
                enqueuedAt=self._clock(),
            )
            self._entries[exercise_id] = entry
            logger.info(f"Queued change for exercise {exercise_id}: {entry.patch}")
        else:
            entry.patch = {**entry.patch, **patch}
            entry.version += 1
            if entry.failed:
                logger.info(f"New edit revives failed sync for exercise {exercise_id}")
            logger.info(f"Merged change for exercise {exercise_id} (v{entry.version}): {entry.patch}")

        entry.attempts = 0
        entry.failed = False
        entry.lastError = None
        return entry.model_copy(deep=True)

    def drain(self) -> List[PendingUpdate]:
        """Snapshot of syncable entries in enqueue order; nothing is removed"""
        return [entry.model_copy(deep=True) for entry in self._entries.values() if not entry.failed]

    def remove(self, exercise_id: str, matched_patch: Mapping[str, Any]) -> bool:
        """
        Drop an entry only if its patch still equals what was sent.
        If the user edited the exercise while the request was in flight,
        the entry survives with the newer patch.
        """
        entry = self._entries.get(exercise_id)
        if entry is None:
            return False
        if entry.patch != dict(matched_patch):
            logger.info(f"Exercise {exercise_id} changed during sync, keeping v{entry.version}")
            return False
        del self._entries[exercise_id]
        return True

    def patch_for(self, exercise_id: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(exercise_id)
        return dict(entry.patch) if entry else None

    def get(self, exercise_id: str) -> Optional[PendingUpdate]:
        entry = self._entries.get(exercise_id)
        return entry.model_copy(deep=True) if entry else None

    def record_failure(self, exercise_id: str, reason: str) -> int:
        """Count a failed flush for an entry; returns the new attempt count"""
        entry = self._entries.get(exercise_id)
        if entry is None:
            return 0
        entry.attempts += 1
        entry.lastError = reason
        return entry.attempts

    def mark_failed(self, exercise_id: str, reason: str):
        """Park an entry: it stays queued but is no longer drained"""
        entry = self._entries.get(exercise_id)
        if entry is None:
            return
        entry.failed = True
        entry.lastError = reason
        logger.warning(f"Sync for exercise {exercise_id} parked after {entry.attempts} attempts: {reason}")

    def failed_entries(self) -> List[str]:
        return [entry.exerciseId for entry in self._entries.values() if entry.failed]

    def failure_reasons(self) -> Dict[str, str]:
        return {
            entry.exerciseId: entry.lastError or ""
            for entry in self._entries.values()
            if entry.failed
        }

    def rekey(self, old_id: str, new_id: str):
        """Carry a pending entry over to the id the server assigned"""
        entry = self._entries.pop(old_id, None)
        if entry is None:
            return
        existing = self._entries.get(new_id)
        if existing is not None:
            entry.patch = {**existing.patch, **entry.patch}
        entry.exerciseId = new_id
        self._entries[new_id] = entry
