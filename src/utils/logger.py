"""Structured logging setup using structlog and rich.

Call ``setup_logging()`` once when the host process starts.  Modules then
use ``get_logger(__name__, component=...)`` to obtain a bound structlog
logger.  Events are rendered for humans on stderr (via rich) and as JSON
lines in a rotating file so that analyzer and provider decisions can be
audited after the fact.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

# ---------------------------------------------------------------------------
# Module-level state
# ---------------------------------------------------------------------------
_LOGGING_CONFIGURED: bool = False

_DEFAULT_LOG_DIR = Path(__file__).resolve().parents[2] / "data" / "logs"
_LOG_FILE_NAME = "comptoir.log"
_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
_BACKUP_COUNT = 5


def _shared_processors() -> list[structlog.types.Processor]:
    """Processors applied to structlog events and foreign stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(
    log_level: str = "INFO", log_dir: str | Path | None = None, force: bool = False
) -> None:
    """Configure structlog, the stdlib root logger and both handlers.

    Idempotent: later calls are no-ops unless *force* is set, so
    ``get_logger`` may trigger a default configuration before the host
    applies its settings with ``force=True``.

    Parameters
    ----------
    log_level:
        Root log level name (``DEBUG``, ``INFO``, ...).
    log_dir:
        Directory for the rotating JSON log file, ``data/logs`` by default.
    force:
        Replace the handlers installed by an earlier call.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if _LOGGING_CONFIGURED and not force:
        return

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    directory = Path(log_dir) if log_dir else _DEFAULT_LOG_DIR
    directory.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    shared = _shared_processors()

    console_handler = RichHandler(
        console=Console(stderr=True, width=140),
        show_time=False,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=True),
            foreign_pre_chain=shared,
        ),
    )
    root_logger.addHandler(console_handler)

    file_handler = RotatingFileHandler(
        filename=str(directory / _LOG_FILE_NAME),
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(ensure_ascii=False),
            foreign_pre_chain=shared,
        ),
    )
    root_logger.addHandler(file_handler)

    # Provider SDKs log every HTTP exchange at INFO.
    for noisy in ("httpx", "httpcore", "anthropic", "openai"):
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=[
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _LOGGING_CONFIGURED = True


def get_logger(name: str, **initial_binds: Any) -> structlog.stdlib.BoundLogger:
    """Return a *bound* structlog logger for *name*.

    Parameters
    ----------
    name:
        Typically ``__name__`` of the calling module.
    **initial_binds:
        Key-value pairs permanently bound to this logger instance
        (e.g. ``component="analyzer"``).
    """
    if not _LOGGING_CONFIGURED:
        setup_logging()
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    if initial_binds:
        logger = logger.bind(**initial_binds)
    return logger


def preview(text: str | None, limit: int = 80) -> str:
    """Return a single-line, length-capped preview of *text* for log fields."""
    if not text:
        return ""
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[: limit - 1] + "…"
