"""Structured logging for indexing runs and searches.

Every index run and search executes inside ``operation()``, which tags
its log events with a short correlation id and the operation kind so the
lines of one run can be pulled out of a shared log file.

Console handlers go quiet while a Rich progress bar owns the terminal;
file handlers keep receiving everything at their own level.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog

if TYPE_CHECKING:
    from shelfrag.config.models import LoggingConfig, LogOutputConfig

_operation_id: ContextVar[str | None] = ContextVar("operation_id", default=None)
_operation_kind: ContextVar[str | None] = ContextVar("operation_kind", default=None)

# First file destination of the active config, shown in error hints
_log_file_path: Path | None = None

# Libraries that log every request at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore", "huggingface_hub", "urllib3")


def get_operation_id() -> str | None:
    return _operation_id.get()


def set_operation_id(operation_id: str | None = None) -> str:
    """Set (or generate a 12-char hex) correlation id for the current context."""
    oid = operation_id or uuid4().hex[:12]
    _operation_id.set(oid)
    return oid


def clear_operation_id() -> None:
    _operation_id.set(None)
    _operation_kind.set(None)


@contextmanager
def operation(kind: str) -> Iterator[str]:
    """Tag log events emitted inside the block with a fresh id and ``kind``."""
    id_token = _operation_id.set(uuid4().hex[:12])
    kind_token = _operation_kind.set(kind)
    try:
        yield _operation_id.get() or ""
    finally:
        _operation_kind.reset(kind_token)
        _operation_id.reset(id_token)


def get_log_file_path() -> Path | None:
    return _log_file_path


def _tag_operation(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    if oid := _operation_id.get():
        event_dict["operation_id"] = oid
    if kind := _operation_kind.get():
        event_dict.setdefault("operation", kind)
    return event_dict


def _level(name: str | None, default: int = logging.INFO) -> int:
    if not name:
        return default
    value = logging.getLevelName(name.upper())
    return value if isinstance(value, int) else default


class ConsoleSuppressingFilter(logging.Filter):
    """Drops console records while a progress display is live."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: ARG002
        from shelfrag.core.progress import is_console_suppressed

        return not is_console_suppressed()


def configure_logging(
    *,
    config: LoggingConfig | None = None,
    json_format: bool = False,
    level: str = "INFO",
) -> None:
    """Install handlers for ``config.outputs`` (or one stderr handler).

    Safe to call repeatedly; previous root handlers are closed and replaced.
    """
    global _log_file_path
    from shelfrag.config.models import LoggingConfig, LogOutputConfig

    if config is None:
        config = LoggingConfig(
            level=level,  # type: ignore[arg-type]
            outputs=[LogOutputConfig(format="json" if json_format else "console")],
        )
    root_level = _level(config.level)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", key="timestamp"),
        _tag_operation,  # type: ignore[list-item]
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    root.setLevel(root_level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _log_file_path = None
    for output in config.outputs:
        handler = _handler_for(output, pre_chain)
        handler.setLevel(_level(output.level, root_level))
        root.addHandler(handler)
        if output.destination not in ("stderr", "stdout") and _log_file_path is None:
            _log_file_path = Path(output.destination)


def _handler_for(
    output: LogOutputConfig, pre_chain: list[structlog.types.Processor]
) -> logging.Handler:
    handler: logging.Handler
    if output.destination in ("stderr", "stdout"):
        stream = sys.stderr if output.destination == "stderr" else sys.stdout
        handler = logging.StreamHandler(stream)
        handler.addFilter(ConsoleSuppressingFilter())
        colors = stream.isatty()
    else:
        path = Path(output.destination)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        colors = False

    renderer: structlog.types.Processor
    if output.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=colors, pad_event_to=0, pad_level=False)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain)
    )
    return handler


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger=name)
    return logger  # type: ignore[no-any-return]
