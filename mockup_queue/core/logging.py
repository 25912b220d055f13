"""Structured logging for the API and the dispatch workers."""

import logging
import sys
from typing import Any, Dict, List, Optional
import structlog
from structlog.stdlib import LoggerFactory
from mockup_queue.core.config import Settings, get_settings

# Libraries that log every HTTP call or SQL statement at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "botocore", "aiobotocore")


def _processors(settings: Settings) -> List[Any]:
    processors: List[Any] = [
        # request_id, job_id and task bindings from structlog.contextvars
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.is_production:
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors += [
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.LINENO,
                ]
            ),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ]
    return processors


def _setup_sentry(settings: Settings) -> None:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.celery import CeleryIntegration
    except ImportError:
        logging.warning("Sentry SDK not installed. Skipping Sentry integration.")
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        release=f"{settings.app_name}@1.0.0",
        integrations=[
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            SqlalchemyIntegration(),
            CeleryIntegration(monitor_beat_tasks=True),
        ],
        traces_sample_rate=0.1 if settings.is_production else 1.0,
    )


def setup_logging() -> None:
    """Configure structlog and the stdlib root logger.

    Production emits one JSON object per line; development uses the console
    renderer with file and line numbers.
    """
    settings = get_settings()

    structlog.configure(
        processors=_processors(settings),
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    log_level = getattr(logging, settings.log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    levels: Dict[str, int] = {
        "uvicorn": log_level,
        "uvicorn.error": log_level,
        "uvicorn.access": logging.WARNING if settings.is_production else log_level,
        "celery": log_level,
    }
    if settings.is_production:
        levels.update({name: logging.WARNING for name in _CHATTY_LOGGERS})
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)

    if settings.sentry_dsn:
        _setup_sentry(settings)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def bind_log_context(**values: Any) -> None:
    """Attach values to every log line emitted by the current task or request."""
    structlog.contextvars.bind_contextvars(**values)


def clear_log_context() -> None:
    structlog.contextvars.clear_contextvars()
