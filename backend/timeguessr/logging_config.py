"""
Structured logging configuration with structlog.

LOG_FORMAT selects the renderer: "json" for log aggregation, "console" or
empty for human-readable output. LOG_LEVEL is a standard level name.
"""

import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, MutableMapping, Optional, Union

import structlog

LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

VALID_LOG_FORMATS = {"json", "console", ""}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _serialize_enums(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Replace Enum values (ranks, session states) with their .value."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def resolve_log_level(level: Union[int, str, None]) -> int:
    if level is None:
        return logging.INFO
    if isinstance(level, int):
        return level
    name = level.upper()
    if name not in VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid LOG_LEVEL={level!r}. Must be one of {', '.join(sorted(VALID_LOG_LEVELS))}."
        )
    return getattr(logging, name)


def resolve_json_mode(log_format: Optional[str]) -> bool:
    value = (log_format or "").lower()
    if value not in VALID_LOG_FORMATS:
        raise ValueError(f"Invalid LOG_FORMAT={log_format!r}. Must be 'json', 'console', or empty.")
    return value == "json"


def _build_formatter(json_mode: bool, colors: bool = False) -> logging.Formatter:
    renderer = structlog.processors.JSONRenderer() if json_mode else structlog.dev.ConsoleRenderer(colors=colors)
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def setup_logging(
    log_dir: Optional[Union[Path, str]] = None,
    level: Union[int, str, None] = None,
    log_format: Optional[str] = None,
) -> Optional[Path]:
    """
    Configure structlog with a stdout handler and, when log_dir is given, a
    timestamped log file inside it.

    Returns the log file path if one was created.
    """
    json_mode = resolve_json_mode(log_format)
    level = resolve_log_level(level)

    # format_exc_info runs in the ProcessorFormatter, not here
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _serialize_enums,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    # repeated calls must not stack handlers
    root_logger.handlers.clear()

    # httpx logs every request, httpcore every socket event
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(_build_formatter(json_mode, colors=sys.stdout.isatty()))
    root_logger.addHandler(stdout_handler)

    if log_dir is None:
        return None

    dir_path = Path(log_dir)
    dir_path.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(tz=timezone.utc).strftime(LOG_FILE_TIMESTAMP_FORMAT)
    file_path = dir_path / f"{timestamp}.log"
    file_handler = logging.FileHandler(file_path)
    file_handler.setFormatter(_build_formatter(json_mode))
    root_logger.addHandler(file_handler)
    return file_path
