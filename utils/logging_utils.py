import logging
from config import config

# Console level per run mode
MODE_LEVELS = {
    "debug": logging.DEBUG,
    "debug_no_save": logging.INFO,
    "non_debug": logging.WARNING,
}

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging():
    """
    Configure the sync client logger from the current run mode.
    Non-debug mode only reports sync failures and session loss; debug modes
    also trace every flush cycle and token refresh. httpx request lines are
    only shown in full debug mode.
    """
    level = MODE_LEVELS.get(config.debug_mode, logging.INFO)

    handlers = [logging.StreamHandler()]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)

    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)

    return logging.getLogger("workout_sync")

# Global logger instance - import this in other modules
logger = setup_logging()
