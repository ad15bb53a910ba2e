"""
Logging configuration for the knowledge console.
Uses structlog; per-request fields (request_id, path, method) are carried in
contextvars and merged into every event logged while the request runs.
"""

import logging
import sys

import structlog

from .config import Settings, get_settings

# Chatty third-party loggers that would drown the pipeline's own events
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "sentence_transformers", "urllib3")


def setup_logging(settings: Settings):
    """
    Configure structured logging for the application.

    LOG_LEVEL picks the threshold; JSON_LOGS switches from the colored
    console renderer to one JSON object per line.
    """
    numeric_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if settings.json_logs:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    return structlog.get_logger().bind(service="pkc")


def bind_request_context(request_id: str, method: str, path: str) -> None:
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=method, path=path)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


logger = setup_logging(get_settings())
