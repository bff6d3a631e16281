from __future__ import annotations

import json
import logging
import os
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional


LOGGER_NAME = "gitsync"

# Environment variables for configuration
ENV_LOG_DIR = "GITSYNC_LOG_DIR"
ENV_LOG_LEVEL = "GITSYNC_LOG_LEVEL"
ENV_LOG_MAX_BYTES = "GITSYNC_LOG_MAX_BYTES"
ENV_LOG_BACKUP_COUNT = "GITSYNC_LOG_BACKUP_COUNT"
ENV_LOG_DISABLE_FILE = "GITSYNC_LOG_DISABLE_FILE"

# Defaults
DEFAULT_LOG_DIR = Path.home() / ".gitsync" / "logs"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5

_logger_initialized = False
_session_start: Optional[str] = None
# Settings from loaded config; environment variables take precedence
_configured: Dict[str, Any] = {}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_log_level() -> int:
    """Get log level from environment, defaulting to INFO."""
    level_name = (os.getenv(ENV_LOG_LEVEL) or _configured.get("level") or DEFAULT_LOG_LEVEL).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        print(
            f"gitsync: Invalid log level '{level_name}', falling back to {DEFAULT_LOG_LEVEL}",
            file=sys.stderr,
        )
        return logging.INFO
    return level


def _get_log_file_path() -> Optional[Path]:
    """Get the log file path, creating directories if needed.

    Returns None if file logging is disabled via GITSYNC_LOG_DISABLE_FILE=1
    or the log directory cannot be created.
    """
    global _session_start
    disable = os.getenv(ENV_LOG_DISABLE_FILE)
    if disable is None:
        if _configured.get("disable_file"):
            return None
    elif disable.lower() in ("1", "true", "yes"):
        return None

    log_dir = Path(os.getenv(ENV_LOG_DIR) or _configured.get("log_dir") or DEFAULT_LOG_DIR)
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(f"gitsync: Cannot create log directory {log_dir}: {exc}", file=sys.stderr)
        return None

    if _session_start is None:
        _session_start = _utcnow().strftime("%Y-%m-%d_%H%M%S")
    # Session-based filename: gitsync_2024-01-15_143022.log
    return log_dir / f"gitsync_{_session_start}.log"


def configure_logging(
    level: Optional[str] = None,
    log_dir: Optional[str] = None,
    disable_file: bool = False,
) -> None:
    """Apply logging settings from loaded configuration.

    GITSYNC_LOG_* environment variables still win over these values. The
    logger is rebuilt on the next log call; calling with no arguments
    restores the defaults.
    """
    global _logger_initialized
    _configured.clear()
    if level:
        _configured["level"] = level
    if log_dir:
        _configured["log_dir"] = str(Path(log_dir).expanduser())
    if disable_file:
        _configured["disable_file"] = True
    _logger_initialized = False


def _get_logger() -> logging.Logger:
    """Get or initialize the gitsync logger.

    By default, logs to ~/.gitsync/logs/gitsync_<session>.log

    Configuration via environment variables:
    - GITSYNC_LOG_DIR: Directory for log files (default: ~/.gitsync/logs/)
    - GITSYNC_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    - GITSYNC_LOG_MAX_BYTES: Max log file size before rotation (default: 10MB)
    - GITSYNC_LOG_BACKUP_COUNT: Number of backup files to keep (default: 5)
    - GITSYNC_LOG_DISABLE_FILE: Set to 1 to disable file logging (stderr only)
    """
    global _logger_initialized
    logger = logging.getLogger(LOGGER_NAME)

    if not _logger_initialized:
        _logger_initialized = True
        logger.handlers.clear()

        log_level = _get_log_level()
        logger.setLevel(log_level)

        formatter = logging.Formatter(
            "[%(levelname)s %(asctime)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S"
        )

        log_file = _get_log_file_path()
        if log_file:
            max_bytes = int(os.getenv(ENV_LOG_MAX_BYTES, DEFAULT_MAX_BYTES))
            backup_count = int(os.getenv(ENV_LOG_BACKUP_COUNT, DEFAULT_BACKUP_COUNT))

            file_handler = RotatingFileHandler(
                str(log_file),
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(log_level)
            logger.addHandler(file_handler)

        # stderr only gets warnings and above
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(max(log_level, logging.WARNING))
        logger.addHandler(stream_handler)

    return logger


def _format_fields(message: str, fields: Dict[str, Any]) -> str:
    if not fields:
        return message
    return f"{message} " + json.dumps(fields, separators=(",", ":"), sort_keys=True, default=str)


def log_action(
    action: str,
    *,
    outcome: str = "ok",
    duration_ms: Optional[float] = None,
    repo: Optional[str] = None,
    **fields: Any,
) -> None:
    """Emit a structured log line for an action.

    Fields are serialized to JSON (``default=str`` so paths and enums are
    safe). Keep the schema lightweight.

    Args:
        action: Name of the action being logged (e.g. ``git.pull``)
        outcome: Result status ("ok", "error", "merge_required", ...)
        duration_ms: How long the action took in milliseconds
        repo: Repository path the action targeted
        **fields: Additional fields to include
    """
    payload: Dict[str, Any] = {
        "ts": _utcnow().isoformat(),
        "action": action,
        "outcome": outcome,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    if repo is not None:
        payload["repo"] = repo
    if fields:
        payload.update(fields)

    _get_logger().info(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))


def log_debug(message: str, **fields: Any) -> None:
    """Log a debug message with optional structured fields.

    Only emitted when log level is DEBUG.
    """
    logger = _get_logger()
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(_format_fields(message, fields))


def log_warning(message: str, **fields: Any) -> None:
    """Log a warning message with optional structured fields."""
    _get_logger().warning(_format_fields(message, fields))


def log_error(message: str, **fields: Any) -> None:
    """Log an error message with optional structured fields."""
    _get_logger().error(_format_fields(message, fields))


@contextmanager
def timeit(action: str, *, repo: Optional[str] = None, **fields: Any):
    """Time a block and emit a structured log on exit.

    On exception, logs outcome="error" (plus the exception class) and
    re-raises. The yielded dict is merged into the log payload, so the
    block can attach results (``info["decision"] = ...``).
    """
    start = time.perf_counter()
    result_info: Dict[str, Any] = {}
    try:
        yield result_info
    except Exception as exc:
        duration_ms = (time.perf_counter() - start) * 1000.0
        log_action(
            action,
            outcome=result_info.pop("outcome", "error"),
            duration_ms=duration_ms,
            repo=repo,
            error=type(exc).__name__,
            **{**fields, **result_info},
        )
        raise
    duration_ms = (time.perf_counter() - start) * 1000.0
    log_action(
        action,
        outcome=result_info.pop("outcome", "ok"),
        duration_ms=duration_ms,
        repo=repo,
        **{**fields, **result_info},
    )
