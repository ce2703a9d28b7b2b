"""Structured logging for wallcycle commands and the rotation supervisor."""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from pathlib import Path, PurePath
from typing import Any, Iterator, MutableMapping, Optional, Union

import structlog

# Loggers of libraries wallcycle drives, raised to WARNING unless debugging.
_THIRD_PARTY_LOGGERS = ("urllib3", "urllib3.connectionpool", "apscheduler", "watchfiles")


def stringify_paths(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Render ``Path`` values, alone or in lists, as plain strings."""

    for key, value in list(event_dict.items()):
        if isinstance(value, PurePath):
            event_dict[key] = str(value)
        elif isinstance(value, (list, tuple)) and any(isinstance(item, PurePath) for item in value):
            event_dict[key] = [str(item) if isinstance(item, PurePath) else item for item in value]
    return event_dict


_DEFAULT_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.PositionalArgumentsFormatter(),
    stringify_paths,
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[Union[str, PurePath]] = None,
) -> None:
    """Initialise structlog and stdlib logging.

    Parameters
    ----------
    level:
        Textual logging level (e.g. ``"DEBUG"``). Defaults to ``"INFO"``.
    json_output:
        Emit one JSON object per line, e.g. for ``wallcycle serve`` under a
        service manager.
    log_file:
        Optional file that receives a copy of every log line.
    """

    # Command results are JSON on stdout.
    handlers = [logging.StreamHandler(sys.stderr)]

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    logging.basicConfig(level=level.upper(), format="%(message)s", handlers=handlers, force=True)

    processors = list(_DEFAULT_PROCESSORS)
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    library_level = logging.INFO if level.upper() == "DEBUG" else logging.WARNING
    for logger_name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(logger_name).setLevel(library_level)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach ``fields`` to every event logged inside the block, on any logger."""

    with structlog.contextvars.bound_contextvars(**fields):
        yield


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to ``name``."""

    return structlog.get_logger(name)
