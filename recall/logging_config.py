"""
Logging configuration for recall.

HTTP client libraries are chatty at INFO; keep them quiet unless asked.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

_LIBRARY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "urllib3")


def configure_quiet_mode(quiet: bool = True):
    """
    Suppress verbose library output.

    Args:
        quiet: If True, silence library loggers and warnings.
            If False, leave everything as configured.
    """
    if not quiet:
        return
    warnings.filterwarnings("ignore")
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("recall").setLevel(logging.DEBUG)
    # Request-level noise only
    for name in ("httpcore", "urllib3"):
        logging.getLogger(name).setLevel(logging.INFO)


def configure_ops_log(store_path):
    """Configure a persistent operations log for a recall store.

    Writes to {store_path}/recall-ops.log using a rotating file handler
    (1MB max, 3 backups). Returns the handler so it can be removed on close.
    """
    log_path = Path(store_path) / "recall-ops.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    recall_logger = logging.getLogger("recall")
    recall_logger.addHandler(handler)
    if recall_logger.level == logging.NOTSET or recall_logger.level > logging.INFO:
        recall_logger.setLevel(logging.INFO)

    return handler
