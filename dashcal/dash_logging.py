"""
Central logging configuration for dashcal.

Keeps the engine's own modules at the requested verbosity while quieting
chatty third-party loggers (HTTP client, event loop).
"""

import logging
import os
from typing import Optional

DASHCAL_MODULES = (
    "dashcal",
    "dashcal.dash_ics_parser",
    "dashcal.dash_rrule_parser",
    "dashcal.dash_rrule_expander",
    "dashcal.dash_event_merger",
    "dashcal.dash_layout",
    "dashcal.dash_fetcher",
    "dashcal.fetch_orchestrator",
    "dashcal.config_loader",
)

NOISY_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
}


def _env_truthy(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def configure_dash_logging(
    debug_mode: bool = False,
    force_debug: Optional[bool] = None,
    level_name: Optional[str] = None,
) -> int:
    """
    Configure logging levels for dashcal.

    Args:
        debug_mode: Whether to enable debug logging for dashcal modules
        force_debug: Override debug mode setting (None to use env var detection)
        level_name: Configured root level name, used when not in debug mode

    Returns:
        The root level that was applied

    Environment Variables:
        DASHCAL_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        DASHCAL_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    if force_debug is not None:
        final_debug = force_debug
    else:
        final_debug = debug_mode or _env_truthy("DASHCAL_DEBUG")

    root_level = logging.INFO
    if level_name and level_name.upper() in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, level_name.upper())
    if final_debug:
        root_level = logging.DEBUG
    env_log_level = os.getenv("DASHCAL_LOG_LEVEL", "").upper()
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(levelname)s - %(name)s - %(message)s")
        )
        root_logger.addHandler(handler)

    for logger_name, level in NOISY_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(level)

    module_level = logging.DEBUG if final_debug else root_level
    for module in DASHCAL_MODULES:
        logging.getLogger(module).setLevel(module_level)

    if final_debug:
        root_logger.debug("Debug logging enabled for dashcal modules")
    return root_level
