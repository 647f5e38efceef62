"""
structlog setup shared by the API process and sync workers.

Sync and webhook code binds the connection being worked on into structlog's
context variables, so adapter, client and writer log lines emitted deep in a
sync carry ``connection_id`` and ``adapter`` without passing them around.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Any, Callable, Iterator, MutableMapping, cast

import structlog

from pms_sync.config import LOG_FORMAT, LOG_LEVEL

# Type alias for structlog processor
Processor = Callable[[Any, str, MutableMapping[str, Any]], Any]

# PMS clients are chatty at DEBUG; keep request-level noise out of sync logs
NOISY_LOGGERS = ("urllib3", "requests", "uvicorn.access", "alembic", "sqlalchemy.engine")


def setup_logging(level: str = LOG_LEVEL, log_format: str = LOG_FORMAT) -> None:
    """
    Configure structured logging globally.

    Args:
        level: Minimum level name, e.g. "INFO"
        log_format: "json" for log aggregation, "console" for humans. An
            empty value picks console at DEBUG and JSON otherwise.
    """
    level = level.upper()
    logging.basicConfig(
        format="[%(asctime)s] %(levelname)s in %(name)s:%(lineno)d: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        level=level,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    use_json = log_format == "json" if log_format else level != "DEBUG"
    renderer: Processor = cast(
        Processor,
        structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer(colors=True),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def connection_log_context(connection_id: int, adapter: str, **extra: Any) -> Iterator[None]:
    """
    Bind a connection to every log line emitted inside the block.

    Values bound by an outer block (such as the request id) are kept; the
    connection keys are removed again on exit, also when the block raises.

    Example:
        >>> with connection_log_context(12, "smoobu", sync_type="full"):
        ...     logger.info("sync_started")  # carries connection_id and adapter
    """
    with structlog.contextvars.bound_contextvars(connection_id=connection_id, adapter=adapter, **extra):
        yield
