"""Structured logging for the tournament core (structlog).

Console output in development, one JSON object per line in production.
Standard library records (redis, asyncio) go through the same renderer.

Context keys used across tdcore:
- tournament_id: bound by the engine for every call on one tournament
- action: engine method name (start_clock, process_bustout, ...)
- registration_id / player_id / table_id: passed per event
- actor_user_id: director who triggered a ledgered operation

Event names are snake_case verbs in the past tense
(player_busted, balance_executed, lock_acquire_timeout).
"""

import logging
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from tdcore.config import Settings

# Per-call keys the engine binds; cleared when the call returns
ENGINE_CONTEXT_KEYS = ("tournament_id", "action")

_QUIET_LOGGERS = ("redis", "asyncio")


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    app_env: str = "development",
) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Force JSON output outside production
        app_env: "production" always renders JSON
    """
    use_json = json_logs or app_env == "production"

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if use_json:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        shared_processors.append(structlog.dev.set_exc_info)
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))

    # 락 재시도 루프가 redis 디버그 로그를 대량으로 남김
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging_from_settings(settings: "Settings") -> None:
    """configure_logging() with the TD_LOG_LEVEL / TD_JSON_LOGS / TD_APP_ENV values."""
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.json_logs,
        app_env=settings.app_env,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("player_busted", tournament_id="t1", registration_id="r1")
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables to all subsequent log calls in this task.

    Usage:
        bind_context(actor_user_id="director-7")
        logger.info("balance_executed")  # includes actor_user_id
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


def unbind_context(*keys: str) -> None:
    """Remove specific context variables."""
    structlog.contextvars.unbind_contextvars(*keys)


@contextmanager
def tournament_context(tournament_id: str, action: str) -> Iterator[None]:
    """Bind tournament_id and action for the duration of one engine call.

    Keys bound by the caller outside the block (e.g. actor_user_id)
    are left in place.
    """
    bind_context(tournament_id=tournament_id, action=action)
    try:
        yield
    finally:
        unbind_context(*ENGINE_CONTEXT_KEYS)
