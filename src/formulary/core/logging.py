"""Centralised logging setup for formulary."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog
from structlog.types import FilteringBoundLogger

_CONFIGURED = False
_HANDLERS: list[logging.Handler] = []


def sanitise_context(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Drop None values from the event dictionary.

    Args:
        logger: The logger instance.
        method_name: The name of the method called on the logger.
        event_dict: The event dictionary to sanitise.

    Returns:
        The sanitised event dictionary.
    """
    return {k: v for k, v in event_dict.items() if v is not None}


def configure_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    enable_console: bool = False,
    force: bool = False,
) -> None:
    """Configure logging for formulary.

    Args:
        level: The logging level as a string (e.g., "DEBUG", "INFO").
        log_file: Optional path to a log file for file logging.
        enable_console: Whether to enable console logging.
        force: Replace an earlier configuration.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    if _CONFIGURED:
        for handler in _HANDLERS:
            logging.root.removeHandler(handler)
        _HANDLERS.clear()

    if log_file is None:
        log_dir = Path.home() / ".formulary" / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "evaluator.log"

    numeric_level = getattr(logging, level.upper())
    file_handler = RotatingFileHandler(log_file, maxBytes=2_000_000, backupCount=2)
    file_handler.setLevel(numeric_level)

    shared_processors = [
        sanitise_context,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.root.addHandler(console_handler)
        _HANDLERS.append(console_handler)

        renderers = [
            structlog.processors.ExceptionRenderer(),
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.root.setLevel(numeric_level)
    logging.root.addHandler(file_handler)
    _HANDLERS.append(file_handler)

    _CONFIGURED = True


def get_logger(name: str = "formulary") -> FilteringBoundLogger:
    """Get a structlog logger instance.

    Args:
        name: Optional name for the logger, typically the module name.

    Returns:
        A structlog FilteringBoundLogger instance.

    Usage:
        log = get_logger(__name__)
        log.info("step_complete", formula="ccap", step="configure", duration_ms=123)

    Standard context keys:
        - formula (str): Name of the formula being evaluated
        - version (str): Release version
        - platform (str): "macos", "linux" or "unsupported"
        - step (str): Pipeline step name
        - returncode (int): Exit status of an external command
        - duration_ms (int): Operation duration in milliseconds
        - error (str): Error message if applicable
    """
    if not _CONFIGURED:
        configure_logging()
    return structlog.get_logger(name)
