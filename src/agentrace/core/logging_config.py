"""Append-only file logging for hook and scan invocations."""

import logging
from pathlib import Path

from agentrace.core.settings import Settings

LOG_FORMAT = "%(asctime)s %(process)d %(levelname)s %(name)s: %(message)s"


def configure_logging(config: Settings) -> Path | None:
    """Attach a single append-mode file handler to the ``agentrace`` logger.

    Safe to call more than once per process. Returns the log path, or None if
    the log file could not be opened (logging then goes nowhere).
    """
    package_logger = logging.getLogger("agentrace")
    package_logger.setLevel(logging.DEBUG if config.debug_mode else logging.INFO)

    log_path = config.resolved_log_path
    for handler in package_logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_path:
            return log_path

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    except OSError:
        package_logger.addHandler(logging.NullHandler())
        return None

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
    return log_path
