"""
Structured logging for the OpenConnect panel.

structlog renders every event on top of stdlib logging, so third-party
loggers (waitress, httpx, python-telegram-bot) end up in the same stream.
"""

import functools
import logging
import sys
import time
from typing import Optional
import structlog
from config.app_config import get_config

# Libraries that log every request or poll at INFO.
NOISY_LOGGERS = ("httpx", "telegram.ext.Updater", "waitress.queue")

def setup_structured_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure stdlib logging and structlog for the whole process."""
    monitoring = None
    if log_level is None or log_format is None:
        monitoring = get_config().monitoring
    level_name = (log_level or monitoring.log_level).upper()
    fmt = (log_format or monitoring.log_format).lower()
    level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    renderer = structlog.dev.ConsoleRenderer() if fmt == "console" else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)

class LoggerMixin:
    """Gives a class ``self.logger`` named after the class."""

    @property
    def logger(self) -> structlog.BoundLogger:
        return get_logger(self.__class__.__name__)

def log_function_call(func):
    """Log entry at debug level and failures at error level, then re-raise."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        logger.debug("Function called", function=func.__name__, args=args[1:], kwargs=kwargs)
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logger.error(
                "Function failed",
                function=func.__name__,
                error=str(e),
                error_type=type(e).__name__
            )
            raise
    return wrapper

def log_performance(func):
    """Log how long a call took, whether or not it raised."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.monotonic()
        success = False
        try:
            result = func(*args, **kwargs)
            success = True
            return result
        finally:
            get_logger(func.__module__).debug(
                "Function performance",
                function=func.__name__,
                execution_time_ms=round((time.monotonic() - start_time) * 1000, 2),
                success=success
            )
    return wrapper
