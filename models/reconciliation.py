# reconciliation.py
from typing import Optional

from models.pending_queue import PendingChangeQueue
from models.schemas import ExerciseRecord


class ReconciliationResolver:
    """
    Merges server-confirmed records back into local state.
    Fields with an outstanding pending change keep the local value; every other
    field takes the server value, so a slow round-trip never clobbers a newer tap.
    """

    def __init__(self, queue: PendingChangeQueue):
        self.queue = queue

    def merge(self, server_record: ExerciseRecord,
              local_record: Optional[ExerciseRecord]) -> ExerciseRecord:
        if local_record is None:
            return server_record.model_copy()

        merged = server_record.model_dump()
        pending = self.queue.patch_for(local_record.exerciseId) or {}
        for field in pending:
            if field in merged:
                merged[field] = getattr(local_record, field)

        # Local timestamps are never known to the server
        merged["lastModifiedAt"] = local_record.lastModifiedAt
        return ExerciseRecord.model_validate(merged)
