"""
Logging setup for the ``cadence`` package logger.

Modules log through ``logging.getLogger(__name__)``; this installs the
handlers once per process.  Console output goes through rich, an optional
log file gets plain timestamped lines.
"""

import logging
import os

from rich.logging import RichHandler

from .config import LOG_FILE, LOG_LEVEL

_LOGGER_NAME = "cadence"  # package logger all modules inherit from
_initialized = False


def setup_logging(
    level: str | int = LOG_LEVEL,
    log_file: str | None = LOG_FILE,
    console: bool = True,
) -> logging.Logger:
    """Configure the package logger.  Later calls only adjust the level."""
    global _initialized
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    if _initialized:
        return logger

    if console:
        logger.addHandler(
            RichHandler(rich_tracebacks=True, show_path=False, markup=False)
        )

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(fh)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    logger.propagate = False  # stop at package boundary (prevents double logging via root)
    _initialized = True
    logger.debug("Logging initialized (level=%s, file=%s)", level, log_file)
    return logger
