"""
Error types and error logging for recall.

Provider and configuration problems surface as typed exceptions;
full tracebacks go to a log file while the CLI shows clean messages.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class RecallError(Exception):
    """Base class for recall errors."""


class ConfigurationError(RecallError):
    """A provider credential, endpoint or config value is missing or invalid."""


class ProviderResponseError(RecallError):
    """A provider answered, but not with the shape we expected."""


class EmbeddingUnavailable(RecallError):
    """No embedding provider has been configured or initialized."""


class SnapshotError(RecallError):
    """A persisted index snapshot could not be read."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting RECALL_STORE_PATH."""
    store = os.environ.get("RECALL_STORE_PATH")
    if store:
        return Path(store) / "recall-errors.log"
    return Path.home() / ".recall" / "recall-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Error log is best effort
    return log_path
