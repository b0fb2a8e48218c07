from __future__ import annotations

import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from loguru import logger as _logger

_CONFIGURED = False
DEFAULT_LOG_DIR = Path(__file__).resolve().parent / "logs"
LOG_DIR_ENV = "VISUAL_SYNC_LOG_DIR"
LOG_LEVEL_ENV = "VISUAL_SYNC_LOG_LEVEL"

_LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<magenta>{extra}</magenta> - <level>{message}</level>"
)


def _resolve_log_dir(explicit: str | Path | None) -> Path | None:
    """Pick the log directory; file logging is off unless one is given."""

    if explicit is not None:
        return Path(explicit).expanduser().resolve()
    env_value = os.getenv(LOG_DIR_ENV)
    if env_value:
        return Path(env_value).expanduser().resolve()
    return None


def configure_logger(*, log_dir: str | Path | None = None, level: str | None = None) -> None:
    """Install the loguru sinks once per process."""

    global _CONFIGURED
    if _CONFIGURED:
        return

    log_level = level or os.getenv(LOG_LEVEL_ENV, "INFO")

    _logger.remove()
    _logger.add(
        sys.stderr,
        level=log_level,
        format=_LOG_FORMAT,
        colorize=sys.stderr.isatty(),
    )

    target_dir = _resolve_log_dir(log_dir)
    if target_dir is not None:
        target_dir.mkdir(parents=True, exist_ok=True)
        _logger.add(
            target_dir / "visual-sync-{time:YYYY-MM-DD}.log",
            rotation="20 MB",
            retention="7 days",
            level="DEBUG",
            format=_LOG_FORMAT,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    _CONFIGURED = True


def get_logger(*, log_dir: str | Path | None = None, level: str | None = None):
    """Return the shared logger, configuring it on first access."""

    configure_logger(log_dir=log_dir, level=level)
    return _logger


def log_with_context(logger_instance, **context: str | int | None) -> Any:
    """Bind story/build/test identifiers to a logger, skipping unset ones.

    Usage:
        logger = log_with_context(get_logger(), story_id="button--primary", build_id="b1")
        logger.info("Selected build")
    """
    return logger_instance.bind(**{k: v for k, v in context.items() if v is not None})


@contextmanager
def log_timing(logger_instance, operation: str, **context: str | int | None) -> Iterator[Any]:
    """Log how long ``operation`` took, and whether it raised."""

    started = time.monotonic()
    ctx_logger = log_with_context(logger_instance, **context)
    ctx_logger.debug(f"Starting {operation}")
    try:
        yield ctx_logger
    except Exception as exc:
        ctx_logger.warning(f"{operation} failed after {time.monotonic() - started:.3f}s: {exc}")
        raise
    ctx_logger.debug(f"Finished {operation} in {time.monotonic() - started:.3f}s")


def log_success(logger_instance, message: str, **context: str | int | None) -> None:
    log_with_context(logger_instance, **context).success(message)


def log_failure(
    logger_instance, message: str, error: BaseException | None = None, **context: str | int | None
) -> None:
    """Log a failure, appending the error text when there is one."""
    ctx_logger = log_with_context(logger_instance, **context)
    if error is not None:
        ctx_logger.error(f"{message}: {error}")
    else:
        ctx_logger.error(message)
