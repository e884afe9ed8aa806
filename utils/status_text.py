# status_text.py
from models.schemas import SyncStatus

def get_status_text(status: SyncStatus) -> str:
    """
    Generate a short sync status line for the UI.
    Login problems come first, then stuck entries, then pending work.
    Returns "All changes saved" when nothing is waiting.
    """

    if status.authRequired:
        return "Signed out - log in again to save your progress"

    if status.failedEntries:
        count = len(status.failedEntries)
        noun = "exercise" if count == 1 else "exercises"
        return f"Sync stuck for {count} {noun} - your progress is kept on this device"

    if status.pendingCount or status.inFlight:
        count = max(status.pendingCount, status.inFlight)
        noun = "change" if count == 1 else "changes"
        return f"Saving {count} {noun}..."

    return "All changes saved"
