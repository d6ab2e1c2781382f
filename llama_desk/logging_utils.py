"""Route stdlib log records through structlog when structured output is on."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import structlog

APP_LOGGER_PREFIX = "llama_desk"
NOISY_LIBRARY_LOGGERS = ("httpx", "httpcore", "ollama", "asyncio")
DEFAULT_LOG_FILE = "~/.local/state/llamadesk/app.log"
PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _record_processors() -> list[Any]:
    """Processors applied to records that did not originate in structlog."""
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        # Session code logs ``extra={"event": ..., "token": ...}``; keep those keys.
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _formatter_for(structured: bool) -> logging.Formatter:
    if structured:
        return structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(
                ensure_ascii=False, separators=(",", ":")
            ),
            foreign_pre_chain=_record_processors(),
        )
    return logging.Formatter(PLAIN_FORMAT)


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _is_app_record(record: logging.LogRecord) -> bool:
    return record.name.startswith(APP_LOGGER_PREFIX)


def _open_private_log(path: Path) -> logging.FileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    if os.name == "posix":
        try:
            path.chmod(0o600)
        except OSError as exc:
            logging.getLogger(__name__).warning(
                "Could not restrict log file %s to 0600: %s", path, exc
            )
    return handler


def configure_logging(logging_config: dict[str, Any]) -> None:
    """Install root handlers from the ``[logging]`` config section.

    The terminal belongs to the TUI, so stderr only receives warnings from
    ``llama_desk`` loggers. Everything at the configured level goes to the
    optional log file.
    """
    level_name = str(logging_config.get("level", "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    structured = bool(logging_config.get("structured", True))

    if structured:
        _configure_structlog()
    formatter = _formatter_for(structured)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    console = logging.StreamHandler()
    console.setLevel(max(level, logging.WARNING))
    console.addFilter(_is_app_record)
    console.setFormatter(formatter)
    root.addHandler(console)

    if logging_config.get("log_to_file", False):
        log_path = Path(
            str(logging_config.get("log_file_path", DEFAULT_LOG_FILE))
        ).expanduser()
        file_handler = _open_private_log(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in NOISY_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
