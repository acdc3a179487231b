"""
Logging setup for the vaultindex CLI.

By default only warnings from vaultindex reach the terminal and HTTP client
chatter is muted. ``--verbose`` (or VAULTINDEX_VERBOSE=1) turns on debug
output on stderr. Independently, every command that opens an index appends
INFO records to ``vaultindex-ops.log`` beside the database.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

OPS_LOG_NAME = "vaultindex-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

_PACKAGE_LOGGER = "vaultindex"
_NOISY_LOGGERS = ("urllib3", "requests", "httpx", "openai")


def configure_quiet_mode(quiet: bool = True):
    """Mute (or unmute) third-party loggers and Python warnings."""
    warnings.filterwarnings("ignore" if quiet else "default")
    level = logging.ERROR if quiet else logging.NOTSET
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def _has_stderr_handler(logger: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        for h in logger.handlers
    )


def enable_debug_mode():
    """Send DEBUG records from vaultindex and its HTTP clients to stderr."""
    configure_quiet_mode(quiet=False)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    if not _has_stderr_handler(root):
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(logging.DEBUG)
        console.setFormatter(logging.Formatter(
            "%(asctime)s %(name)s %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        ))
        root.addHandler(console)

    for name in (_PACKAGE_LOGGER, *_NOISY_LOGGERS):
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_ops_log(store_dir) -> RotatingFileHandler:
    """
    Attach a rotating operations log in ``store_dir``.

    Records index/embed summaries at INFO whatever the console verbosity.
    The caller owns the returned handler; see ``detach_ops_log``.
    """
    log_path = Path(store_dir) / OPS_LOG_NAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    ops = RotatingFileHandler(
        str(log_path), maxBytes=OPS_LOG_MAX_BYTES, backupCount=OPS_LOG_BACKUPS,
    )
    ops.setLevel(logging.INFO)
    ops.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    pkg = logging.getLogger(_PACKAGE_LOGGER)
    pkg.addHandler(ops)
    if pkg.level == logging.NOTSET or pkg.level > logging.INFO:
        pkg.setLevel(logging.INFO)
    return ops


def detach_ops_log(handler: Optional[logging.Handler]) -> None:
    """Remove and close a handler returned by ``configure_ops_log``."""
    if handler is None:
        return
    logging.getLogger(_PACKAGE_LOGGER).removeHandler(handler)
    handler.close()
