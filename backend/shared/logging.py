"""Structured logging for the relay server.

Relay modules log through structlog; records are rendered by stdlib handlers
so uvicorn's own messages come out in the same format. Format, level and the
optional log directory come from RelayServerSettings.
"""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from typing import Any

    from structlog.typing import Processor

LogFormat = Literal["json", "console"]

# One file per server start.
LOG_FILE_NAME = "relay-{started:%Y-%m-%d_%H-%M-%S}.log"

# uvicorn logs every HTTP request, websockets every frame at DEBUG.
_QUIET_LOGGERS = {"uvicorn.access": logging.WARNING, "websockets": logging.INFO}


def _enum_values(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Phases, roles and error codes are StrEnums; log them by value."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def relay_processors() -> list[Processor]:
    """Processors every relay event goes through before reaching a stdlib handler."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _enum_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _with_formatter(handler: logging.Handler, log_format: LogFormat, *, colors: bool = False) -> logging.Handler:
    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=colors)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        ),
    )
    return handler


def setup_logging(
    *,
    log_format: LogFormat = "console",
    log_level: str = "INFO",
    log_dir: Path | str | None = None,
) -> Path | None:
    """Configure structlog and the root logger for a server process.

    Output always goes to stdout. With ``log_dir`` it is also written to a new
    file in that directory, whose path is returned.
    """
    structlog.configure(
        processors=[
            *relay_processors(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    root_logger.addHandler(_with_formatter(logging.StreamHandler(sys.stdout), log_format, colors=sys.stdout.isatty()))
    if log_dir is None:
        return None

    dir_path = Path(log_dir)
    dir_path.mkdir(parents=True, exist_ok=True)
    file_path = dir_path / LOG_FILE_NAME.format(started=datetime.now(tz=UTC))
    root_logger.addHandler(_with_formatter(logging.FileHandler(file_path), log_format))
    return file_path
