"""
Logging configuration for the schedule engine service.

Features:
- Structured JSON logging for production
- Human-readable console logging for development
- Correlation IDs shared by an HTTP request and the schedule runs it triggers
- Project scoping so every line of a cascade can be traced to its project
- Log rotation with size limits
- Timing decorator for engine entry points
"""

import inspect
import json
import logging
import logging.handlers
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Callable, Optional

from .config import get_settings

correlation_id_var: ContextVar[str] = ContextVar('correlation_id', default='no-correlation-id')
project_id_var: ContextVar[Optional[str]] = ContextVar('project_id', default=None)


def get_correlation_id() -> str:
    """Get the current correlation ID from context."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set a correlation ID in the current context. Generates one if not provided."""
    cid = correlation_id or str(uuid.uuid4())[:8]
    correlation_id_var.set(cid)
    return cid


def get_project_id() -> Optional[str]:
    """Get the project the current schedule run belongs to, if any."""
    return project_id_var.get()


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging in production.
    One object per line so the output can be shipped to a log aggregator as-is.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        project_id = get_project_id()
        if project_id:
            log_data["project_id"] = project_id

        if hasattr(record, 'extra_data'):
            log_data["data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'duration_ms'):
            log_data["duration_ms"] = record.duration_ms

        return json.dumps(log_data, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """
    Human-readable colored formatter for development console output.
    """

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[41m',  # Red background
    }
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, '')
        scope = get_correlation_id()
        project_id = get_project_id()
        if project_id:
            scope = f"{scope}:{project_id[:8]}"

        timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]

        parts = [
            f"{self.DIM}{timestamp}{self.RESET}",
            f"{color}{record.levelname:8}{self.RESET}",
            f"{self.DIM}[{scope}]{self.RESET}",
            f"{self.BOLD}{record.name}{self.RESET}",
            f"→ {record.getMessage()}"
        ]
        message = " ".join(parts)

        if hasattr(record, 'extra_data'):
            message += f" {self.DIM}{record.extra_data}{self.RESET}"

        if hasattr(record, 'duration_ms'):
            message += f" {self.DIM}({record.duration_ms:.2f}ms){self.RESET}"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that stamps every record with the current correlation ID.
    """

    def process(self, msg: str, kwargs: dict) -> tuple:
        extra = kwargs.get('extra', {})
        extra['correlation_id'] = get_correlation_id()
        kwargs['extra'] = extra
        return msg, kwargs


def setup_logging() -> None:
    """
    Configure logging for the application.
    Call this once during application startup.
    """
    settings = get_settings()

    log_level_str = settings.log_level.upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = settings.is_production

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    if is_production:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    if settings.enable_file_logging:
        log_dir = Path('logs')
        log_dir.mkdir(exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / 'schedule-engine.log',
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)

    logger = get_logger(__name__)
    logger.info(
        "Logging initialized",
        extra={'extra_data': {
            'level': log_level_str,
            'environment': settings.environment,
            'production_mode': is_production,
            'file_logging': settings.enable_file_logging
        }}
    )


def get_logger(name: str) -> ContextLogger:
    """
    Get a context-aware logger for the given module name.

    Usage:
        logger = get_logger(__name__)
        logger.info("Cascade finished", extra={'extra_data': {'updated': 3}})
    """
    return ContextLogger(logging.getLogger(name), {})


def _emit_timing(logger: ContextLogger, level: int, func: Callable, duration_ms: float) -> None:
    record = logging.LogRecord(
        name=logger.logger.name,
        level=level,
        pathname="",
        lineno=0,
        msg=f"{func.__name__} completed",
        args=(),
        exc_info=None
    )
    record.duration_ms = duration_ms
    record.funcName = func.__name__
    logger.logger.handle(record)


def log_execution_time(logger: Optional[ContextLogger] = None, level: int = logging.DEBUG):
    """
    Decorator to log function execution time.

    Usage:
        @log_execution_time()
        async def refresh_schedule(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        nonlocal logger
        if logger is None:
            logger = get_logger(func.__module__)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.perf_counter() - start) * 1000
                logger.error(f"{func.__name__} failed after {duration_ms:.2f}ms: {e}", exc_info=True)
                raise
            if logger.logger.isEnabledFor(level):
                _emit_timing(logger, level, func, (time.perf_counter() - start) * 1000)
            return result

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.perf_counter() - start) * 1000
                logger.error(f"{func.__name__} failed after {duration_ms:.2f}ms: {e}", exc_info=True)
                raise
            if logger.logger.isEnabledFor(level):
                _emit_timing(logger, level, func, (time.perf_counter() - start) * 1000)
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


class LogContext:
    """
    Context manager scoping log lines to one project.

    Usage:
        with LogContext(project_id="p-1"):
            logger.info("Cascade started")  # carries project_id
    """

    def __init__(self, project_id: str):
        self.project_id = project_id
        self._token = None

    def __enter__(self):
        self._token = project_id_var.set(self.project_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        project_id_var.reset(self._token)
        return False
