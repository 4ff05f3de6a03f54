"""
Logging configuration for the fundhub backend.

Provides two loggers:
- main_logger: General logging to console (INFO level) and file
- transport_logger: Script/callback transport chatter to file only (DEBUG level)
"""
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fundhub.core.config import settings

# Log files (relative to project root unless overridden)
LOG_DIR = Path(settings.log_dir) if settings.log_dir else Path(__file__).parent.parent.parent / "logs"
TRANSPORT_LOG_FILE = LOG_DIR / "transport.log"
MAIN_LOG_FILE = LOG_DIR / "backend.log"

# Log formats
CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# Module-level logger references
_main_logger = None
_transport_logger = None


def _file_handler(path: Path, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
    return handler


def _console_handler(level: int) -> logging.StreamHandler:
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, DATE_FORMAT))
    return handler


def _fresh_logger(name: str, *handlers: logging.Handler) -> logging.Logger:
    log = logging.getLogger(name)
    log.setLevel(logging.DEBUG)
    log.propagate = False
    log.handlers.clear()
    for handler in handlers:
        log.addHandler(handler)
    return log


def setup_logging():
    """Initialize logging configuration. Should be called once at startup."""
    global _main_logger, _transport_logger

    LOG_DIR.mkdir(parents=True, exist_ok=True)

    # Main: INFO on console, everything in backend.log
    _main_logger = _fresh_logger(
        "fundhub",
        _console_handler(logging.INFO),
        _file_handler(MAIN_LOG_FILE, logging.DEBUG),
    )
    # Transport: script loads and slot traffic in transport.log, only WARNING+ on console
    _transport_logger = _fresh_logger(
        "fundhub.transport",
        _file_handler(TRANSPORT_LOG_FILE, logging.DEBUG),
        _console_handler(logging.WARNING),
    )
    return _main_logger, _transport_logger


def get_main_logger() -> logging.Logger:
    """Get the main logger for general operations."""
    global _main_logger
    if _main_logger is None:
        setup_logging()
    return _main_logger


def get_transport_logger() -> logging.Logger:
    """Get the logger for script loads and callback slots."""
    global _transport_logger
    if _transport_logger is None:
        setup_logging()
    return _transport_logger


def log_fetch_start(task_name: str, details: str = ""):
    """
    Log the start of a multi-request fetch.
    Brief message on console + detailed entry in the transport log.
    """
    main = get_main_logger()
    transport = get_transport_logger()

    console_msg = f"[FETCH] {task_name} started"
    if details:
        console_msg += f" ({details})"

    main.info(console_msg)
    transport.info(f"=== {task_name} STARTED === {details}")


def log_fetch_complete(task_name: str, summary: str = ""):
    """Log completion of a multi-request fetch."""
    main = get_main_logger()
    transport = get_transport_logger()

    console_msg = f"[FETCH] {task_name} completed"
    if summary:
        console_msg += f" - {summary}"

    main.info(console_msg)
    transport.info(f"=== {task_name} COMPLETED === {summary}")


def log_fetch_error(task_name: str, error: str):
    """Log a multi-request fetch that stopped on an error."""
    main = get_main_logger()
    transport = get_transport_logger()

    main.warning(f"[FETCH] {task_name} failed: {error}")
    transport.error(f"=== {task_name} FAILED === {error}")
