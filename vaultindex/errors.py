"""
Exceptions and error logging for vaultindex.

Errors fall into three groups:
- Content problems (bad front matter) never raise; see ``document.py``
- Per-note embedding failures are counted and skipped; see ``embeddings.py``
- Store and reconciliation failures abort the whole operation
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class VaultIndexError(Exception):
    """Base class for vaultindex errors."""


class StoreUnavailableError(VaultIndexError):
    """The index database could not be created or opened."""


class ReconcileError(VaultIndexError):
    """A reconciliation pass was abandoned. Nothing from the pass was kept."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class EmbeddingError(VaultIndexError):
    """The embedding provider failed or returned an unusable response."""


class VectorDecodeError(VaultIndexError):
    """A stored embedding blob is not a whole number of doubles."""


ERROR_LOG_NAME = "vaultindex-errors.log"


def error_log_path(log_dir: Optional[Path] = None) -> Path:
    """Where tracebacks go: ``log_dir`` (the index directory), else ~/.vaultindex."""
    directory = log_dir if log_dir is not None else Path.home() / ".vaultindex"
    return directory / ERROR_LOG_NAME


def _format_entry(exc: BaseException, context: str) -> str:
    stamp = datetime.now(timezone.utc).isoformat()
    heading = f"[{stamp}] {context}".rstrip()
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return f"\n{'=' * 60}\n{heading}\n{trace}"


def log_exception(
    exc: BaseException,
    context: str = "",
    log_dir: Optional[Path] = None,
) -> Path:
    """
    Append ``exc`` and its traceback to the error log.

    The file is created owner-readable only. Failure to write is ignored so
    that reporting an error never raises a second one.

    Args:
        exc: The exception being reported
        context: Short label, usually the command that failed
        log_dir: Directory for the log; the CLI passes the index directory

    Returns:
        Path of the error log, for pointing the user at it
    """
    log_path = error_log_path(log_dir)
    entry = _format_entry(exc, context)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as f:
            f.write(entry)
    except OSError:
        pass
    return log_path
