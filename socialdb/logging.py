"""Structured logging for SocialDB, built on Loguru.

Every record emitted through ``socialdb.logging.logger`` is patched with a
JSON rendering that carries the ambient request context:

- ``request_id``: correlation id of the surrounding request, if any
- ``user_id``: the authenticated caller the service layer is acting for
- ``operation``: the service or repository operation being run

The context lives in a ``ContextVar``, so concurrent requests served by one
event loop never see each other's values.

Log lines go to stderr (stdout is left to the CLI's rich output). Profiles
from ``socialdb.config`` pick JSON or colored text and an optional rotating
file under ``data_dir``.

Example:
    >>> from socialdb.logging import logger, set_request_context
    >>> set_request_context(user_id="u-1", operation="send_message")
    >>> logger.info("Message stored")
    >>> # {"ts": "...", "level": "INFO", "msg": "Message stored", "user_id": "u-1", ...}
"""

import json
import sys
import traceback
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from types import MappingProxyType
from typing import Any

from loguru import logger as loguru_logger

from socialdb.config import settings

CONTEXT_KEYS = ("request_id", "user_id", "operation")

_EMPTY: Mapping[str, str] = MappingProxyType({})

_context: ContextVar[Mapping[str, str]] = ContextVar("socialdb_log_context", default=_EMPTY)

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> "
    "<level>{level: <8}</level> "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> "
    "{extra[context]}<level>{message}</level>"
)

FILE_ROTATION = "20 MB"
FILE_RETENTION = "14 days"


# =============================================================================
# Record Patching
# =============================================================================


def _render_context(context: Mapping[str, str]) -> str:
    if not context:
        return ""
    return "[" + " ".join(f"{key}={context[key]}" for key in CONTEXT_KEYS if key in context) + "] "


def to_json(record: dict[str, Any]) -> str:
    """Render a Loguru record as one JSON object.

    The request context is merged at top level; ``logger.bind()`` extras go
    under ``extra`` so they cannot shadow core fields.
    """
    payload: dict[str, Any] = {
        "ts": record["time"].isoformat(),
        "level": record["level"].name,
        "msg": record["message"],
        "logger": record["name"],
        "fn": record["function"],
        "line": record["line"],
    }
    payload.update(_context.get())

    extra = {key: value for key, value in record["extra"].items() if key not in ("context", "json")}
    if extra:
        payload["extra"] = extra

    if exc := record["exception"]:
        payload["error"] = {
            "type": exc.type.__name__ if exc.type else None,
            "message": str(exc.value),
            "stack": "".join(traceback.format_exception(exc.type, exc.value, exc.traceback)),
        }

    return json.dumps(payload, default=str)


def _patch(record: dict[str, Any]) -> None:
    record["extra"]["context"] = _render_context(_context.get())
    record["extra"]["json"] = to_json(record)


def _json_format(record: dict[str, Any]) -> str:
    return "{extra[json]}\n"


# =============================================================================
# Logger Configuration
# =============================================================================


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Path | None = None,
    colorize: bool = True,
) -> Any:
    """Replace Loguru's handlers with the SocialDB sinks.

    Args:
        level: Minimum level for every sink
        json_logs: One JSON object per line instead of colored text
        log_file: Also write to this file, rotated and gzip-compressed
        colorize: Colorize text output (ignored for JSON)

    Returns:
        The patched logger every SocialDB module logs through
    """
    loguru_logger.remove()
    loguru_logger.configure(extra={"context": ""})
    patched = loguru_logger.patch(_patch)

    line_format: Any = _json_format if json_logs else TEXT_FORMAT
    patched.add(
        sys.stderr,
        level=level,
        format=line_format,
        colorize=colorize and not json_logs,
    )

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        patched.add(
            log_file,
            level=level,
            format=line_format,
            colorize=False,
            rotation=FILE_ROTATION,
            retention=FILE_RETENTION,
            compression="gz",
            enqueue=True,
        )

    return patched


logger = setup_logging(
    level=settings.log_level,
    json_logs=settings.log_json,
    log_file=settings.data_dir / "socialdb.log" if settings.log_to_file else None,
    colorize=not settings.log_json,
)


# =============================================================================
# Request Context
# =============================================================================


def set_request_context(
    request_id: str | None = None,
    user_id: str | None = None,
    operation: str | None = None,
) -> None:
    """Merge values into the request context of the current task.

    Keys passed as None keep their current value.
    """
    updates = {"request_id": request_id, "user_id": user_id, "operation": operation}
    merged = dict(_context.get())
    merged.update({key: value for key, value in updates.items() if value is not None})
    _context.set(MappingProxyType(merged))


def clear_request_context() -> None:
    _context.set(_EMPTY)


def get_request_context() -> dict[str, str | None]:
    """Current context, with None for unset keys."""
    context = _context.get()
    return {key: context.get(key) for key in CONTEXT_KEYS}


@contextmanager
def request_context(**values: str | None) -> Iterator[None]:
    """Scope context changes to a block.

    Values given here, and any ``set_request_context`` call inside the block,
    are undone on exit.
    """
    token = _context.set(_context.get())
    try:
        set_request_context(**values)
        yield
    finally:
        _context.reset(token)


__all__ = [
    "logger",
    "setup_logging",
    "to_json",
    "set_request_context",
    "clear_request_context",
    "get_request_context",
    "request_context",
    "CONTEXT_KEYS",
]
