#!/usr/bin/env python3
"""
linerelay Logging Configuration

Centralized logging setup for consistent formatting across the project.
Supports both development (console) and production (console + file) modes.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Starting server...")
    logger.warning("Send failed", extra={"username": "alice", "peer": "127.0.0.1:50412"})
"""

from __future__ import annotations
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Dict, Any
import os


# ========================================
#           LOGGING FORMATTERS
# ========================================

class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output"""

    # ANSI Color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class GenericFormatter(logging.Formatter):
    """Prefixes the message with relay context passed through ``extra=``."""

    CONTEXT_FIELDS = (
        ("connection_id", "conn"),
        ("peer", "peer"),
        ("username", "user"),
        ("recipient", "to"),
    )

    def format(self, record: logging.LogRecord) -> str:
        context = []
        for attr, label in self.CONTEXT_FIELDS:
            value = getattr(record, attr, None)
            if value is not None:
                context.append(f"{label}={value}")

        if not context:
            return super().format(record)

        original_msg = record.msg
        record.msg = f"[{' '.join(context)}] {record.msg}"
        try:
            return super().format(record)
        finally:
            record.msg = original_msg


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()

def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Returns:
        Configured logger instance

    Examples:
        logger = get_logger(__name__)
        logger.info("Server starting")

        # With context
        logger.info("Delivered message", extra={
            "username": "alice",
            "recipient": "bob",
        })
    """
    logger = logging.getLogger(name)

    # Only configure each logger once
    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    """Configure a logger with appropriate handlers and formatters"""

    logger.setLevel(_get_log_level(level))

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    if _is_development():
        _add_console_handler(logger, colored=True)
    else:
        _add_console_handler(logger, colored=False)

    log_dir = _get_log_dir()
    if log_dir is not None:
        _add_file_handler(logger, log_dir)

    # Prevent duplicate messages from parent loggers
    logger.propagate = False


def _get_log_level(level: Optional[str] = None) -> int:
    """Determine appropriate log level"""

    level = level or os.getenv('RELAY_LOG_LEVEL')
    if level:
        return getattr(logging, level.upper(), logging.INFO)

    # Default based on environment
    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    return (
        os.getenv('RELAY_ENV', '').lower() in ['dev', 'development'] or
        'pytest' in sys.modules
    )


def _is_production() -> bool:
    return os.getenv('RELAY_ENV', '').lower() in ['prod', 'production']


def _get_log_dir() -> Optional[Path]:
    """File logging is on when RELAY_LOG_DIR is set, or in production mode"""
    configured = os.getenv('RELAY_LOG_DIR')
    if configured:
        return Path(configured)
    if _is_production():
        return Path("logs")
    return None


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    """Add console handler with appropriate formatter"""

    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    handler = logging.StreamHandler(sys.stdout)

    if colored and _supports_color():
        formatter: logging.Formatter = ColoredFormatter(
            fmt=fmt,
            datefmt='%H:%M:%S'
        )
    else:
        formatter = GenericFormatter(
            fmt=fmt,
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger, log_dir: Path) -> None:
    """Add a size-rotated file handler"""

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "relay.log"
    handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )

    formatter = GenericFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if terminal supports color output"""

    # stdout must be a terminal
    if not (hasattr(sys.stdout, "isatty") and sys.stdout.isatty()):
        return False

    # TERM should not be dumb
    if os.getenv("TERM", "") == "dumb":
        return False

    # Windows-specific check
    if sys.platform == "win32":
        # On modern Windows terminals, ANSI colors are supported
        return os.getenv("ANSICON") is not None or os.getenv("WT_SESSION") is not None or os.getenv("TERM_PROGRAM") == "vscode" or "WindowsTerminal" in os.getenv("TERM", "")

    return True

# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: str = "INFO") -> None:
    """
    Configure root logging for the entire application.
    Call this once at application startup.

    Loggers already handed out by get_logger() are re-levelled so that a
    --log-level flag given on the command line applies everywhere.

    Args:
        level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
    """
    root_logger = logging.getLogger()
    _configure_logger(root_logger, level)
    resolved = _get_log_level(level)
    for name in _loggers_configured:
        logging.getLogger(name).setLevel(resolved)


def log_relay_event(logger: logging.Logger, level: str, message: str,
                    **context: Any) -> None:
    """
    Log a relay event with structured context.

    Args:
        logger: Logger instance
        level: Log level ("debug", "info", "warning", "error")
        message: Log message
        **context: Context fields (username, peer, recipient, connection_id)

    Example:
        log_relay_event(logger, "info", "User registered",
                        username="alice", peer="127.0.0.1:50412")
    """
    extra_context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    log_func = getattr(logger, level.lower())
    log_func(message, extra=extra_context)
