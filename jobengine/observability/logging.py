"""
Structured logging for job engine processes.

Engine modules log through the standard library with ``extra=`` fields.
setup_logging() routes those records through structlog so job fields bound
by job_log_context() and the active span ids end up on every line.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO, Any

import structlog
from opentelemetry import trace

from jobengine.config import get_settings

# Libraries whose debug chatter drowns out job logs
NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach trace_id and span_id of the recording span, if there is one."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def _pre_chain() -> list[Any]:
    # Applied to both structlog and plain logging records
    return [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]


def _renderer(log_format: str) -> Any:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging(
    log_level: str | None = None,
    log_format: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """
    Install a structlog formatter on the root logger.

    Replaces the root handlers, so call it once from the host process
    before starting workers.

    Args:
        log_level: Overrides settings.log_level.
        log_format: "json" or "console". Overrides settings.log_format.
        stream: Output stream. Defaults to stdout.
    """
    settings = get_settings()
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_format or settings.log_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def job_log_context(**kwargs: Any) -> Iterator[None]:
    """
    Bind fields to every log record emitted inside the block.

    Context variables are copied per asyncio task, so concurrent workers do
    not see each other's fields.
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
