#!/usr/bin/env python3
"""
Structured Logging Module

Provides centralized logging for the gateway:
- Log levels (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- Daily file rotation with a separate error log
- Structured JSON file output, human-readable console output
- discord.py / werkzeug loggers routed through the same handlers
"""
import os
import sys
import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from datetime import datetime
from typing import List, Optional

# =============================================================================
# CONFIGURATION
# =============================================================================

LOG_DIR = Path(os.environ.get("LOG_DIR", Path.cwd() / "logs"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.environ.get("LOG_FORMAT", "structured")  # "structured" or "simple"
LOG_TO_FILE = os.environ.get("LOG_TO_FILE", "false").lower() == "true"
LOG_TO_CONSOLE = os.environ.get("LOG_TO_CONSOLE", "true").lower() == "true"
LOG_ROTATE_WHEN = os.environ.get("LOG_ROTATE_WHEN", "midnight")
LOG_BACKUP_COUNT = int(os.environ.get("LOG_BACKUP_COUNT", "30"))

ROOT_LOGGER_NAME = "verifygate"
ERROR_HANDLER_NAME = "errors"

# Attributes every LogRecord has; anything else came in through `extra=`
_STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()) | {"message", "asctime"}


# =============================================================================
# FORMATTERS
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """JSON-structured log formatter for better parsing."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key not in _STANDARD_ATTRS and key not in log_data:
                log_data[key] = value

        return json.dumps(log_data, default=str, ensure_ascii=False)


class SimpleFormatter(logging.Formatter):
    """Simple human-readable log formatter."""

    def __init__(self):
        super().__init__(
            fmt='[%(asctime)s] %(levelname)-8s %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


# =============================================================================
# LOGGER SETUP
# =============================================================================

def _build_handlers(log_level: int) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []

    if LOG_FORMAT == "structured":
        file_formatter: logging.Formatter = StructuredFormatter()
    else:
        file_formatter = SimpleFormatter()

    if LOG_TO_FILE:
        LOG_DIR.mkdir(parents=True, exist_ok=True)

        file_handler = TimedRotatingFileHandler(
            filename=LOG_DIR / f"{ROOT_LOGGER_NAME}.log",
            when=LOG_ROTATE_WHEN,
            backupCount=LOG_BACKUP_COUNT,
            encoding='utf-8',
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

        error_handler = TimedRotatingFileHandler(
            filename=LOG_DIR / f"{ROOT_LOGGER_NAME}_errors.log",
            when=LOG_ROTATE_WHEN,
            backupCount=LOG_BACKUP_COUNT,
            encoding='utf-8',
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.set_name(ERROR_HANDLER_NAME)
        error_handler.setFormatter(file_formatter)
        handlers.append(error_handler)

    if LOG_TO_CONSOLE:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(SimpleFormatter())
        handlers.append(console_handler)

    return handlers


def setup_logger(name: str = ROOT_LOGGER_NAME, level: Optional[str] = None) -> logging.Logger:
    """
    Set up the package root logger with file rotation and console output.

    Child loggers (``verifygate.server`` etc.) propagate here, so this
    only needs to run once per process.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)

    # Don't add handlers if already configured
    if logger.handlers:
        return logger

    log_level = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    logger.setLevel(log_level)

    for handler in _build_handlers(log_level):
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def set_log_level(level: str) -> None:
    """Apply a validated level to the package logger and its handlers."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    root = setup_logger()
    root.setLevel(log_level)
    for handler in root.handlers:
        if handler.get_name() != ERROR_HANDLER_NAME:
            handler.setLevel(log_level)


def route_library_loggers(*names: str) -> None:
    """Send third-party loggers (discord, werkzeug) through our handlers."""
    root = setup_logger()
    for lib_name in names:
        lib_logger = logging.getLogger(lib_name)
        lib_logger.handlers = list(root.handlers)
        lib_logger.setLevel(max(root.level, logging.INFO))
        lib_logger.propagate = False


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def get_logger(component: Optional[str] = None) -> logging.Logger:
    """Get the package logger, or a named child of it."""
    root = setup_logger()
    if not component:
        return root
    return root.getChild(component)
