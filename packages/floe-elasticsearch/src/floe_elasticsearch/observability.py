"""Structured logging and OpenTelemetry spans for floe-elasticsearch.

Events are named after what happened (``search_node_started``,
``table_loaded``) and carry their context as key/value pairs. Spans wrap
the bootstrap steps, every table load and every bulk submission.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

if TYPE_CHECKING:
    from opentelemetry.trace import Span, Tracer
    from structlog.stdlib import BoundLogger

LOGGER_NAME = "floe.elasticsearch"

# Client libraries that log every HTTP request at INFO.
CHATTY_LOGGERS = ("elastic_transport", "urllib3", "trino")

_tracer: Tracer | None = None


def get_logger(**context: Any) -> BoundLogger:
    """Get the package logger.

    Args:
        **context: Key/value pairs bound to every event of the returned logger.

    Example:
        >>> log = get_logger(component="search_node")
        >>> log.info("search_node_started", url="http://localhost:9200")
    """
    logger: BoundLogger = structlog.get_logger(LOGGER_NAME)
    return logger.bind(**context) if context else logger


def get_tracer() -> Tracer:
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(LOGGER_NAME)
    return _tracer


def configure_logging(*, log_level: str = "INFO", json_format: bool = False) -> None:
    """Route structlog through stdlib logging with console or JSON output.

    HTTP client loggers are held at WARNING unless ``log_level`` is DEBUG.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: Render one JSON object per event instead of console lines.

    Example:
        >>> configure_logging(log_level="DEBUG", json_format=True)
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    renderer: Any = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", level=level, force=True)

    client_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(client_level)


@contextmanager
def span(
    name: str,
    *,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: dict[str, Any] | None = None,
    log_end: bool = True,
) -> Iterator[Span]:
    """Trace a step and log its outcome as ``<name>_completed`` or ``<name>_failed``.

    Args:
        name: Span name, also the prefix of the logged events.
        kind: Span kind.
        attributes: Span attributes, also bound to the logged events.
        log_end: Log completion at INFO. Failures are always logged.

    Example:
        >>> with span("start_query_cluster", attributes={"query.nodes": 2}):
        ...     cluster.start()
    """
    attrs = attributes or {}
    log = get_logger(**attrs)

    with get_tracer().start_as_current_span(name, kind=kind, attributes=attrs) as current:
        log.debug(f"{name}_started")
        try:
            yield current
        except Exception as exc:
            current.set_status(Status(StatusCode.ERROR, str(exc)))
            current.record_exception(exc)
            log.error(f"{name}_failed", error=str(exc))
            raise
        current.set_status(Status(StatusCode.OK))
        if log_end:
            log.info(f"{name}_completed")


@contextmanager
def load_operation(
    operation: str,
    *,
    table: str | None = None,
    index: str | None = None,
    batch: int | None = None,
) -> Iterator[Span]:
    """Trace one step of loading a table into the search node.

    Batch-level spans complete at DEBUG so a large table does not flood
    the log with one line per batch.

    Args:
        operation: Step name ("load", "bulk_submit").
        table: Source table.
        index: Target index.
        batch: Batch position within the load.
    """
    attrs: dict[str, Any] = {}
    if table:
        attrs["tpch.table"] = table
    if index:
        attrs["search.index"] = index
    if batch is not None:
        attrs["search.batch"] = batch

    with span(
        f"load.{operation}",
        kind=SpanKind.CLIENT,
        attributes=attrs,
        log_end=batch is None,
    ) as current:
        yield current


def log_retry_attempt(
    operation: str,
    attempt: int,
    max_attempts: int,
    wait_seconds: float,
    error: str,
) -> None:
    """Log a failed attempt that is about to be retried."""
    get_logger().warning(
        f"{operation}_retrying",
        attempt=attempt,
        max_attempts=max_attempts,
        wait_seconds=round(wait_seconds, 3),
        error=error,
    )
