from __future__ import annotations
import functools
import inspect
import logging
import sys
import json
import time
from typing import Any, Dict, List, Optional, TextIO
from datetime import datetime, timezone
from pathlib import Path

# Structured context travels on the record under this attribute
CONTEXT_ATTR = "catalog_context"

# Chatty third-party loggers held at WARNING
QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "fastapi", "aiohttp", "asyncio")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, suitable for log shippers."""

    def __init__(self, service_name: str = "freetier-catalog"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": self.service_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        context = getattr(record, CONTEXT_ATTR, None)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Human readable console lines; only the level name is colorized."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__(fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
                         datefmt="%H:%M:%S")
        self.use_colors = use_colors

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        context = getattr(record, CONTEXT_ATTR, None)
        if context:
            line += " " + " ".join(f"{key}={value}" for key, value in context.items())
        if self.use_colors and record.levelno in self.LEVEL_COLORS:
            colored = f"{self.LEVEL_COLORS[record.levelno]}{record.levelname}{self.RESET}"
            line = line.replace(record.levelname, colored, 1)
        return line


def setup_logging(
    level: str = "INFO",
    service_name: str = "freetier-catalog",
    log_file: Optional[str] = None,
    use_json: bool = False,
    use_colors: bool = True,
    stream: Optional[TextIO] = None
) -> None:
    """Configure the root logger for a catalog process.

    The console handler writes to stderr unless ``stream`` is given, since
    stdout carries JSON-RPC frames when serving over stdio. A ``log_file``
    always receives JSON lines regardless of ``use_json``.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    console = logging.StreamHandler(stream or sys.stderr)
    console.setFormatter(JSONFormatter(service_name) if use_json else ColoredFormatter(use_colors))
    handlers: List[logging.Handler] = [console]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter(service_name))
        handlers.append(file_handler)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class StructuredLogger:
    """Logger that attaches keyword context to every record.

    >>> events = get_structured_logger(__name__, component="catalog")
    >>> events.bind(source="disk").info("Catalog published", services=3)
    """

    def __init__(self, name: str, **context):
        self.logger = logging.getLogger(name)
        self.context = context

    def bind(self, **context) -> "StructuredLogger":
        """Return a child logger whose context extends this one."""
        return StructuredLogger(self.logger.name, **{**self.context, **context})

    def log(self, level: int, message: str, exc_info: bool = False, **context) -> None:
        if not self.logger.isEnabledFor(level):
            return
        merged = {**self.context, **context}
        self.logger.log(level, message, exc_info=exc_info,
                        extra={CONTEXT_ATTR: merged}, stacklevel=3)

    def debug(self, message: str, **context) -> None:
        self.log(logging.DEBUG, message, **context)

    def info(self, message: str, **context) -> None:
        self.log(logging.INFO, message, **context)

    def warning(self, message: str, **context) -> None:
        self.log(logging.WARNING, message, **context)

    def error(self, message: str, **context) -> None:
        self.log(logging.ERROR, message, **context)

    def exception(self, message: str, **context) -> None:
        self.log(logging.ERROR, message, exc_info=True, **context)


def get_structured_logger(name: str, **context) -> StructuredLogger:
    return StructuredLogger(name, **context)


def log_performance(logger_name: Optional[str] = None, threshold_ms: float = 1000.0):
    """Warn when the wrapped callable runs longer than ``threshold_ms``.

    Works for plain functions and coroutine functions alike.
    """
    def decorator(func):
        logger = get_logger(logger_name or func.__module__)

        def report(started: float) -> None:
            elapsed_ms = (time.perf_counter() - started) * 1000
            if elapsed_ms > threshold_ms:
                logger.warning(
                    f"Slow function execution: {func.__name__} took {elapsed_ms:.1f}ms",
                    extra={CONTEXT_ATTR: {"function": func.__qualname__,
                                          "duration_ms": round(elapsed_ms, 2),
                                          "threshold_ms": threshold_ms}},
                )

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                started = time.perf_counter()
                try:
                    return await func(*args, **kwargs)
                finally:
                    report(started)
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                report(started)
        return wrapper
    return decorator
