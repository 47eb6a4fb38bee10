"""
Logging for DachsTaler Slots.

Two kinds of lines go through here:
    - ordinary diagnostics (`logger.info`, `log_error`)
    - game events (`log_event`): one line per spin, purchase, daily claim or
      transfer, carrying `event`, `username` and the numbers that changed
      as structured fields

The console shows game events with a tag and their fields; the JSON formatter
emits every field so events can be shipped to a log pipeline as-is.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import orjson

from dachstaler.config import PathsConfig


class Colors:
    RESET = "\033[0m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"


_RESERVED_ATTRS = set(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}


def record_fields(record: logging.LogRecord) -> dict:
    """Structured fields passed through `extra=`."""
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


def _describe(record: logging.LogRecord) -> str:
    """Message plus ` k=v` pairs for game events."""
    message = record.getMessage()
    fields = record_fields(record)
    event = fields.pop("event", None)
    if event is None:
        return message
    fields.pop("username", None)
    details = " ".join(f"{k}={v}" for k, v in fields.items())
    return f"{message} {details}".rstrip()


class ColoredFormatter(logging.Formatter):
    LEVEL_COLORS = {
        logging.DEBUG: Colors.GRAY,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.MAGENTA,
    }

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelno, Colors.RESET)
        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")

        level = f"{color}{record.levelname:<8}{Colors.RESET}"
        name = f"{Colors.CYAN}{record.name}{Colors.RESET}"
        message = _describe(record)
        event = getattr(record, "event", None)
        if event:
            message = f"{Colors.MAGENTA}[{event}]{Colors.RESET} {message}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        return f"{Colors.GRAY}{timestamp}{Colors.RESET} | {level} | {name} | {message}"


class PlainFormatter(logging.Formatter):
    """File output: same layout as the console, no colors."""

    def format(self, record):
        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        message = _describe(record)
        event = getattr(record, "event", None)
        if event:
            message = f"[{event}] {message}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return f"{timestamp} | {record.levelname:<8} | {record.name} | {message}"


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        log_record.update(record_fields(record))
        return orjson.dumps(log_record, default=str).decode()


def setup_logger(
    name: str = "dachstaler",
    level: str = "INFO",
    log_to_file: bool = False,
    log_file_path: Optional[Path] = None,
    max_file_size: int = 5 * 1024 * 1024,  # 5MB
    backup_count: int = 3,
    formatter: str = "color",
) -> logging.Logger:
    """
    Set up and configure a logger.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: Whether to also log to a file
        log_file_path: Rotating log file; defaults to `paths.log_file` from config
        max_file_size: Max size of log file before rotation
        backup_count: Number of backup files to keep
        formatter: "color" or "json" for the console handler

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Don't add handlers if already configured
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    console_handler = logging.StreamHandler(sys.stdout)
    if formatter == "json":
        console_handler.setFormatter(JsonFormatter())
    else:
        console_handler.setFormatter(ColoredFormatter())
    logger.addHandler(console_handler)

    if log_to_file:
        try:
            if log_file_path is None:
                log_file_path = PathsConfig().get_log_path()

            log_file_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_file_path, maxBytes=max_file_size, backupCount=backup_count
            )
            file_handler.setFormatter(PlainFormatter())
            logger.addHandler(file_handler)
        except (OSError, PermissionError) as e:
            # Fallback to console only if file access fails
            sys.stderr.write(f"WARNING: Could not set up file logging: {e}\n")
            sys.stderr.write("Continuing with console logging only.\n")

    logger.propagate = False

    return logger


_app_logger: Optional[logging.Logger] = None


def get_logger(name: str = None) -> logging.Logger:
    """Application logger, or its child `dachstaler.<name>` (e.g. "spin", "shop")."""
    global _app_logger

    if _app_logger is None:
        _app_logger = setup_logger()

    if name:
        return _app_logger.getChild(name)
    return _app_logger


def log_error(logger: logging.Logger, context: str, error: BaseException, **extra):
    """Log a handled error with its call-site context and structured fields."""
    details = " ".join(f"{k}={v}" for k, v in extra.items())
    logger.error(
        f"[{context}] {type(error).__name__}: {error} {details}".rstrip(),
        extra={"context": context, **extra},
    )


def log_event(logger: logging.Logger, event: str, username: str, message: str = "", **fields):
    """
    Record one game event, e.g. log_event(logger, "spin", "alice", grid="🍒 🍒 🍋", cost=10, balance=95).

    `event` and `username` always land in the structured fields.
    """
    logger.info(
        f"@{username.lower()} {message}".rstrip(),
        extra={"event": event, "username": username.lower(), **fields},
    )


def init_logging(
    level: str = "INFO",
    log_to_file: bool = False,
    formatter: str = "color",
    log_file_path: Optional[Path] = None,
):
    """
    Initialize the application logging system.
    Should be called once at application startup.
    """
    global _app_logger
    _app_logger = setup_logger(
        level=level, log_to_file=log_to_file, log_file_path=log_file_path, formatter=formatter
    )
    _app_logger.info(f"Logging initialized at {level} level")
