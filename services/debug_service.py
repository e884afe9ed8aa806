import json
import time
from typing import List

from config import config
from models.schemas import FlushReport, PendingUpdate
from utils.logging_utils import logger

class DebugService:
    """
    Sync snapshot writer for development and troubleshooting.
    Dumps what a flush cycle sent and how it ended when debug snapshots are enabled.
    """

    @staticmethod
    def save_sync_snapshot(cycle: int, entries: List[PendingUpdate], report: FlushReport):
        """
        Write the cycle's queue snapshot and outcome as JSON if snapshot saving is enabled.
        Snapshot failures are logged and never interrupt syncing.
        """
        if not config.save_snapshots or not config.debug_dir:
            return

        try:
            payload = {
                "cycle": cycle,
                "entries": [entry.model_dump() for entry in entries],
                "report": report.model_dump(),
            }

            # Generate descriptive filename with timestamp
            timestamp = int(time.time())
            filename = f"cycle_{cycle:04d}_sent_{report.sent}_{timestamp}.json"
            filepath = config.debug_dir / filename

            filepath.write_text(json.dumps(payload, indent=2, default=str))
            logger.debug(f"Sync snapshot saved: {filename}")

        except OSError as e:
            logger.error(f"Error saving sync snapshot: {e}")

# Global service instance
debug_service = DebugService()
