"""
Structured logging configuration using structlog.

Events are rendered as JSON lines (or a console format for local runs) on
stderr. Credentials that end up in event context are masked before
rendering.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import structlog
from structlog.typing import EventDict, FilteringBoundLogger

# Event keys whose values must never reach a log line
SECRET_KEYS = frozenset({
    "access_token",
    "refresh_token",
    "client_secret",
    "api_key",
    "subscription_key",
    "code",
})

MASK = "***"


def _get_settings():
    """Lazy load settings to avoid circular imports."""
    from .settings import settings
    return settings()


def mask_secrets(_, __, event_dict: EventDict) -> EventDict:
    """Replace credential values with a fixed mask."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = MASK
    return event_dict


def _service_fields(service_name: str, environment: str):
    def add_service(_, __, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        event_dict.setdefault("environment", environment)
        return event_dict
    return add_service


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structlog for the CLI.

    Args:
        log_level: Level name; falls back to the LOG_LEVEL setting
        log_format: "json" or "text"; falls back to the LOG_FORMAT setting
    """
    config = _get_settings()
    level = getattr(logging, (log_level or config.log_level).upper())
    renderer_name = (log_format or config.log_format).lower()

    # stdlib loggers (httpx, sqlalchemy) share the stream and level
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _service_fields(config.service_name, config.environment),
        mask_secrets,
    ]
    if renderer_name == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> FilteringBoundLogger:
    return structlog.get_logger(name)


@contextmanager
def donation_context(donation_id: str, **extra: Any) -> Iterator[None]:
    """Attach donation_id (and any extra fields) to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(donation_id=donation_id, **extra):
        yield


def log_sync_result(logger: FilteringBoundLogger, result, run_id: str) -> Dict[str, Any]:
    """
    Log the counters of a finished run and return them.

    A run with donation errors or a cancellation logs at warning level.
    """
    summary = {
        "run_id": run_id,
        "donations_processed": result.donations_processed,
        "donations_failed": len(result.errors),
        "constituents_created": result.constituents_created,
        "gifts_created": result.gifts_created,
        "gifts_skipped_existing": result.gifts_skipped_existing,
        "duration_ms": round(result.duration_seconds * 1000, 2),
        "resumed": result.resumed,
        "dry_run": result.dry_run,
        "cancelled": result.cancelled,
    }
    if result.errors or result.cancelled:
        logger.warning("Sync run finished with failures", **summary)
    else:
        logger.info("Sync run finished", **summary)
    return summary
