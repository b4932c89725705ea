"""
Central logging configuration for timetable_lite.

Keeps timetable module logs visible while quieting the debug output of the
database driver and event loop.
"""

import logging
import os
from typing import Optional

# Third-party loggers that generate excessive debug logs
NOISY_LOGGERS: dict[str, int] = {
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
}


def configure_lite_logging(
    debug_mode: bool = False,
    force_debug: Optional[bool] = None,
    log_level: Optional[str] = None,
) -> None:
    """
    Configure logging levels for timetable_lite.

    Args:
        debug_mode: Whether to enable debug logging for timetable_lite modules
        force_debug: Override debug mode setting (None to use env var detection)
        log_level: Root log level override (DEBUG, INFO, WARNING, ERROR)

    Environment Variables:
        TIMETABLE_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        TIMETABLE_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("TIMETABLE_DEBUG", "").lower() in ("1", "true", "yes")
    env_log_level = (log_level or os.getenv("TIMETABLE_LOG_LEVEL", "")).upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    # Only add a handler if none exist to avoid duplicate output
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(levelname)s - %(name)s - %(message)s")
        )
        root_logger.addHandler(handler)

    for logger_name, level in NOISY_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(level)

    logging.getLogger("timetable_lite").setLevel(logging.DEBUG if final_debug else logging.INFO)

    if final_debug:
        root_logger.debug("Debug logging enabled for timetable_lite modules")


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}

    for logger_name in ("timetable_lite", *NOISY_LOGGERS):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)

    return status
