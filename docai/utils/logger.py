"""Logging setup shared by the CLI, the API server and the pipeline.

Pipeline modules log event-style messages (``docstate.set_overall
doc_id=... status=...``) through named loggers; this module installs one
stdout handler on the root logger.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Third-party loggers that drown out ledger events at INFO.
QUIET_LOGGERS = ("sqlalchemy.engine", "PIL", "uvicorn.access")


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once; later calls only change the level.

    Args:
        level: Logging level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unknown names fall back to INFO.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger, typically for ``__name__``."""
    return logging.getLogger(name)


def truncate(text: str | None, limit: int = 1400) -> str:
    """Shorten long payloads before they are written to the log."""
    if text is None:
        return ""
    return text if len(text) <= limit else text[:limit] + "...(truncated)"
