"""structlog configuration shared by every module of the engine.

Modules obtain a bound logger with ``get_logger(__name__)`` and log events as
snake_case names with key/value context::

    logger.info("budget_evaluated", tenant_id=tenant_id, percentage=92.0)
"""

import logging
import sys

import structlog

from finops_cost_engine.settings import Settings


def configure_logging(settings: Settings) -> None:
    """Configure stdlib logging and structlog processors once per process.

    Args:
        settings: Engine settings supplying log level and renderer choice.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer: structlog.typing.Processor
    if settings.log_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Return a structlog logger bound to the calling module name."""
    return structlog.get_logger(name)
