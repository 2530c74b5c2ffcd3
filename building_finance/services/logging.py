"""Logging configuration for the finance API server.

Stdout plus file output, level from the LOG_LEVEL env var (default INFO).
Billing actions log at INFO, so the file doubles as an operational trail
alongside the audit_logs table.
"""

import logging
import os
import sys
from pathlib import Path

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers that are too chatty at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "telegram")


def get_log_level() -> int:
    """Get logging level from LOG_LEVEL environment variable.

    Unknown names fall back to INFO.
    """
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_server_logging(log_file: str = "logs/server.log", log_level: int | None = None) -> None:
    """
    Configure root logger for the finance API server.

    Args:
        log_file: Path to log file (default: logs/server.log)
        log_level: Explicit level; read from LOG_LEVEL when omitted

    Behavior:
        - Replaces existing root handlers with a stdout and a file handler
        - ISO format timestamps
        - Keeps SQLAlchemy, httpx and telegram loggers at WARNING unless DEBUG is requested
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    level = log_level if log_level is not None else get_log_level()
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    for handler in (logging.StreamHandler(sys.stdout), logging.FileHandler(log_path)):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["setup_server_logging", "get_log_level"]
