"""Structured logging configuration for Storyboard Studio.

Uses structlog for structured, JSON-capable logging with task correlation.
Concurrent plate generations each bind their entity id, so interleaved log
lines can be told apart.
"""

import logging
import sys
from contextvars import ContextVar

import structlog

# Context variable for task correlation (entity id, frame id, export id)
current_task_id: ContextVar[str | None] = ContextVar("current_task_id", default=None)


def add_task_id(_logger, _method_name, event_dict):
    """Structlog processor to inject task_id into all log events."""
    task_id = current_task_id.get()
    if task_id:
        event_dict["task_id"] = task_id
    return event_dict


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON logs. If False, use colored console output.
    """
    # Shared processors for both structlog and stdlib
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_task_id,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Stdlib loggers (logging.getLogger(__name__)) render through structlog too
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Suppress noisy third-party loggers
    noisy_loggers = [
        "httpx",
        "httpcore",
        "google_genai",
        "google_genai.models",
        "urllib3.connectionpool",
    ]
    for logger_name in noisy_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def set_task_context(task_id: str):
    """Set the current task id for log correlation.

    Returns:
        Token to pass to clear_task_context to restore the previous value
    """
    return current_task_id.set(task_id)


def clear_task_context(token=None) -> None:
    """Restore the previous task id, or clear it when no token is given."""
    if token is not None:
        current_task_id.reset(token)
    else:
        current_task_id.set(None)
