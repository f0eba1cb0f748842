import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Iterator, Optional

from dotenv import load_dotenv
from pythonjsonlogger import jsonlogger

load_dotenv()

# Name of the executor operation (or player step) the current task is running
current_operation: ContextVar[str] = ContextVar("current_operation", default="-")

TEXT_FORMAT = "[%(asctime)s] %(levelname)s [%(operation)s] {%(filename)s:%(lineno)d} - %(message)s"
JSON_FIELDS = "%(asctime)s %(name)s %(levelname)s %(operation)s %(message)s %(filename)s %(lineno)d"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

QUIET_LOGGERS = ("playwright", "asyncio", "urllib3")


@contextmanager
def operation_context(name: str) -> Iterator[None]:
    """Tag every record logged inside the block with ``name``."""
    token = current_operation.set(name)
    try:
        yield
    finally:
        current_operation.reset(token)


class OperationFilter(logging.Filter):
    """Copies the running operation name onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.operation = current_operation.get()
        return True


class CustomFormatter(logging.Formatter):
    """Colored console output, one color per level."""

    COLORS = {
        logging.DEBUG: "\x1b[38;20m",
        logging.INFO: "\x1b[34;20m",
        logging.WARNING: "\x1b[33;20m",
        logging.ERROR: "\x1b[31;20m",
        logging.CRITICAL: "\x1b[31;1m",
    }
    RESET = "\x1b[0m"

    def __init__(self):
        super().__init__()
        self._formatters = {
            level: logging.Formatter(color + TEXT_FORMAT + self.RESET, DATE_FORMAT)
            for level, color in self.COLORS.items()
        }

    def format(self, record):
        formatter = self._formatters.get(record.levelno, self._formatters[logging.INFO])
        return formatter.format(record)


def configure_logger(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure the root logger for the replay engine.

    LOG_LEVEL overrides ``level`` and LOG_MESSAGES_FORMAT=json switches the
    console handler to JSON lines. Every handler carries the current
    operation name.

    Args:
        level: The log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path to write plain-text logs to
    """
    level = os.getenv("LOG_LEVEL", level).upper()
    log_format = os.getenv("LOG_MESSAGES_FORMAT", "text").lower()

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(level)

    console_handler = logging.StreamHandler()
    if log_format == "json":
        console_handler.setFormatter(jsonlogger.JsonFormatter(fmt=JSON_FIELDS, datefmt=DATE_FORMAT))
    else:
        console_handler.setFormatter(CustomFormatter())
    handlers = [console_handler]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(TEXT_FORMAT, DATE_FORMAT))
        handlers.append(file_handler)

    for handler in handlers:
        handler.addFilter(OperationFilter())
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_log_level(level: str) -> None:
    """Change the level of the root logger and its handlers without rebuilding them."""
    level = level.upper()
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        handler.setLevel(level)
