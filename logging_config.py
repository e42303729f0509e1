"""
Centralized logging configuration for PrintLink.

Every log line carries the name of the thread that produced it. Store
callbacks can arrive on the HTTP worker that made a write (in-memory
store) or on a change-stream watcher thread (MongoDB store), so the
thread name is what ties a log line back to its source. Lines written
while serving an HTTP request also name the caller (user id prefix,
method, path), so a write and the live-view updates it causes can be
followed together.

Features:
    - Automatic thread name in all log messages
    - HTTP caller in messages logged during a request
    - Console output (always enabled)
    - Rotating file logs (optional, for production)
    - Separate error log for ERROR/CRITICAL messages
    - Helper functions for getting loggers with consistent naming

Log Format:
    2026-10-18 10:15:30 [INFO    ] [MainThread] [-] printlink.app - Starting application
    2026-10-18 10:15:31 [DEBUG   ] [Watch-printRequests] [-] printlink.core.mongo_store - Watching ...
    2026-10-18 10:15:32 [INFO    ] [Thread-3] [9f8e7d6c POST /requests/a1b2c3d4e5f6/advance] printlink.request.a1b2c3d4 - Claimed by 9f8e7d6c

Usage:
    # At application startup
    from logging_config import setup_logging, get_logger

    setup_logging(log_level=logging.INFO, enable_file_logging=True)

    # In modules
    logger = get_logger(__name__)
    logger.info("This message includes thread context automatically")

    # For one print request
    request_logger = get_request_logger("a1b2c3d4")
"""

import logging
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from flask import g, has_request_context, request


APP_LOGGER_NAME = "printlink"


# =============================================================================
# THREAD CONTEXT FILTER
# =============================================================================

class ThreadContextFilter(logging.Filter):
    """
    Logging filter that adds thread context to all log records.

    Adds thread_name and thread_id to each record for use in the
    format string. Never drops a record.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        current_thread = threading.current_thread()
        record.thread_name = current_thread.name
        record.thread_id = threading.get_ident()
        return True


class CallerContextFilter(logging.Filter):
    """
    Logging filter that adds the HTTP caller to all log records.

    Inside a Flask request, caller is "<user id prefix> <METHOD> <path>"
    (user "-" until identity is resolved). Outside one, for startup and
    change-stream watcher threads, it is "-". Never drops a record.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.caller = "-"
        if has_request_context():
            identity = g.get("identity")
            user = identity.user_id[:8] if identity is not None else "-"
            record.caller = f"{user} {request.method} {request.path}"
        return True


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(
    app_name: str = APP_LOGGER_NAME,
    log_level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    enable_file_logging: bool = True,
) -> logging.Logger:
    """
    Configure application logging with thread context.

    This sets up:
    1. Console handler (always enabled) - for immediate feedback
    2. Rotating file handler (optional) - for persistent logs
    3. Error file handler (optional) - for ERROR/CRITICAL only
    4. Thread context filter - adds thread name to all messages
    5. Caller context filter - adds the HTTP caller when inside a request

    Args:
        app_name: Name of the root logger (default: "printlink")
        log_level: Minimum log level (default: INFO)
        log_dir: Directory for log files (default: ./logs relative to this file)
        enable_file_logging: Whether to write to log files (default: True)

    Returns:
        Configured root logger instance
    """
    logger = logging.getLogger(app_name)
    logger.setLevel(log_level)
    logger.propagate = False  # Prevent duplicate logs to root logger

    # Remove any existing handlers (allows re-configuration)
    logger.handlers.clear()

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)-8s] [%(thread_name)s] [%(caller)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    thread_filter = ThreadContextFilter()
    caller_filter = CallerContextFilter()

    # ---------------------------------------------------------------------
    # Console Handler (always enabled)
    # ---------------------------------------------------------------------
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(thread_filter)
    console_handler.addFilter(caller_filter)
    logger.addHandler(console_handler)

    # ---------------------------------------------------------------------
    # File Handlers (optional)
    # ---------------------------------------------------------------------
    if enable_file_logging:
        if log_dir is None:
            log_dir = Path(__file__).parent / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)

        app_log_file = log_dir / f"{app_name}.log"
        file_handler = RotatingFileHandler(
            filename=app_log_file,
            maxBytes=10 * 1024 * 1024,  # 10 MB per file
            backupCount=5,
            encoding="utf-8"
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(thread_filter)
        file_handler.addFilter(caller_filter)
        logger.addHandler(file_handler)

        error_log_file = log_dir / f"{app_name}_error.log"
        error_handler = RotatingFileHandler(
            filename=error_log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8"
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        error_handler.addFilter(thread_filter)
        error_handler.addFilter(caller_filter)
        logger.addHandler(error_handler)

        logger.info(f"File logging enabled: {app_log_file}")

    logger.info(f"Logging configured at level {logging.getLevelName(log_level)}")
    return logger


# =============================================================================
# LOGGER FACTORY FUNCTIONS
# =============================================================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger with the application namespace.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance, e.g. "printlink.services.request_service"
    """
    if not name.startswith(APP_LOGGER_NAME):
        name = f"{APP_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def get_request_logger(request_id: str) -> logging.Logger:
    """
    Get a logger for one print request.

    Only the first 8 characters of the id are used, which keeps
    grep-by-request practical without flooding logger names.

    Example:
        get_request_logger("a1b2c3d4e5f6...")
        # Logger name: "printlink.request.a1b2c3d4"
    """
    short_id = request_id[:8] if len(request_id) >= 8 else request_id
    return logging.getLogger(f"{APP_LOGGER_NAME}.request.{short_id}")


def set_thread_name(name: str) -> None:
    """Set the name of the current thread (shown in the [thread_name] field)."""
    threading.current_thread().name = name
