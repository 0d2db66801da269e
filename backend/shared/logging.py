"""structlog setup shared by the hub server and client sessions.

Environment variables:
- LOG_FORMAT: "json" for machine-readable lines, "console" or unset for
  human-readable output.
- LOG_LEVEL: DEBUG, INFO (default), WARNING, ERROR or CRITICAL.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterable, MutableMapping
    from contextlib import AbstractContextManager
    from typing import Any

LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

_LOG_FORMATS = ("json", "console", "")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Transport libraries that log every request or frame at INFO/DEBUG.
_NOISY_LOGGERS = ("httpx", "httpcore", "aiohttp.client", "aiohttp.access")


def _serialize_enums(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Log enum members (sync statuses, roles, collection names) by value."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, dict):
            event_dict[key] = {k: v.value if isinstance(v, Enum) else v for k, v in value.items()}
    return event_dict


# Processors every event passes through before reaching a stdlib handler.
# format_exc_info is left to the handler formatter so each handler renders
# a traceback once.
PRE_CHAIN = (
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    _serialize_enums,
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
)


def _is_test() -> bool:
    return "pytest" in sys.modules


def _env_choice(name: str, default: str, allowed: Iterable[str]) -> str:
    value = os.environ.get(name, default).strip()
    allowed = tuple(allowed)
    if value.upper() not in {a.upper() for a in allowed}:
        shown = ", ".join(repr(a) for a in allowed if a)
        raise ValueError(f"Invalid {name}={value!r}. Expected one of {shown} or unset.")
    return value


def configure_structlog(*processors: Any) -> None:  # noqa: ANN401
    """Route structlog through stdlib logging with PRE_CHAIN plus extra processors."""
    structlog.configure(
        processors=[*PRE_CHAIN, *processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def _formatter(*, json_mode: bool, colors: bool = False) -> logging.Formatter:
    renderer = structlog.processors.JSONRenderer() if json_mode else structlog.dev.ConsoleRenderer(colors=colors)
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def _open_log_file(log_dir: Path | str, *, json_mode: bool) -> tuple[logging.Handler, Path]:
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{datetime.now(tz=UTC).strftime(LOG_FILE_TIMESTAMP_FORMAT)}.log"
    handler = logging.FileHandler(path)
    handler.setFormatter(_formatter(json_mode=json_mode))
    return handler, path


def setup_logging(
    log_dir: Path | str | None = None,
    level: int | None = None,
) -> Path | None:
    """Configure structlog output to stdout and, given log_dir, a timestamped file.

    Returns the log file path, or None when only stdout is used. File output
    is skipped under pytest.
    """
    json_mode = _env_choice("LOG_FORMAT", "", _LOG_FORMATS).lower() == "json"
    if level is None:
        level = getattr(logging, _env_choice("LOG_LEVEL", "INFO", _LOG_LEVELS).upper())

    configure_structlog()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    stdout = logging.StreamHandler(sys.stdout)
    stdout.setFormatter(_formatter(json_mode=json_mode, colors=sys.stdout.isatty()))
    root.addHandler(stdout)

    if log_dir is None or _is_test():
        return None
    handler, path = _open_log_file(log_dir, json_mode=json_mode)
    root.addHandler(handler)
    return path


def client_log_context(client_id: str, **extra: Any) -> AbstractContextManager[None]:  # noqa: ANN401
    """Bind the client identity to log lines emitted inside the block.

    Tasks created inside the block keep the binding after it exits.
    """
    return structlog.contextvars.bound_contextvars(client_id=client_id, **extra)
