import argparse
from pathlib import Path
from typing import List, Optional

class Config:
    """
    Central configuration manager for the workout sync client.
    Handles command-line argument parsing, debug modes, and sync/retry parameters.
    """

    def __init__(self):
        # Application mode settings
        self.debug_mode: str = "debug"
        self.save_snapshots: bool = False
        self.debug_dir: Optional[Path] = None
        self.log_file: Optional[Path] = None

        # Remote store API
        self.api_base_url: str = "http://localhost:5000/api"
        self.request_timeout: float = 10.0  # Seconds before an outbound call counts as a timeout
        self.login_path: str = "/auth/login"
        self.refresh_path: str = "/auth/refresh"

        # Authenticated request pipeline
        self.request_max_attempts: int = 3  # Attempts per request before surfacing Transient
        self.backoff_base_delay: float = 0.5  # First retry delay, doubled per attempt
        self.backoff_max_delay: float = 8.0
        self.token_refresh_skew: float = 30.0  # Refresh this many seconds before expiresAt

        # Sync scheduler
        self.sync_interval: float = 15.0  # Seconds between periodic flushes
        self.sync_max_attempts: int = 5  # Failed flushes before an entry is parked as failed

        # Local HTTP service
        self.host: str = "127.0.0.1"
        self.port: int = 8000

        # Human-readable descriptions for each debug mode
        self.mode_descriptions = {
            "debug": "Debug Mode (with sync snapshots)",
            "debug_no_save": "Debug Mode (without sync snapshots)",
            "non_debug": "Non-Debug Mode (minimal logging)"
        }

    def setup_from_args(self, argv: Optional[List[str]] = None):
        """
        Parse command line arguments and configure application settings.
        Creates the snapshot directory if snapshot saving is enabled.
        """
        parser = argparse.ArgumentParser(description="Workout Sync Client")
        parser.add_argument(
            "--mode",
            choices=["debug", "debug_no_save", "non_debug"],
            default="debug_no_save",
            help="Debug mode setting"
        )
        parser.add_argument("--api-url", default=self.api_base_url, help="Remote store base URL")
        parser.add_argument("--sync-interval", type=float, default=self.sync_interval,
                            help="Seconds between periodic sync flushes")
        parser.add_argument("--port", type=int, default=self.port, help="Local service port")
        parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")
        args = parser.parse_args(argv)

        self.debug_mode = args.mode
        self.save_snapshots = (self.debug_mode == "debug")
        self.api_base_url = args.api_url.rstrip("/")
        self.sync_interval = args.sync_interval
        self.port = args.port
        self.log_file = args.log_file

        # Create snapshot directory if needed
        if self.save_snapshots:
            self.debug_dir = Path("sync_snapshots")
            self.debug_dir.mkdir(exist_ok=True)

    @property
    def mode_description(self) -> str:
        """Get human-readable description of current mode"""
        return self.mode_descriptions[self.debug_mode]

# Global configuration instance - import this in other modules
config = Config()
