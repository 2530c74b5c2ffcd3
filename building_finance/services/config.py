"""Configuration loading for the finance engine.

Loads settings from .env file and environment variables with sensible defaults.
Validates values and provides clear error messages.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass
class FinanceConfig:
    """Configuration for the finance engine and its API server."""

    database_url: str = "sqlite+aiosqlite:///./building_finance.db"
    """SQLAlchemy async database URL (default: local SQLite via aiosqlite)"""

    log_file: str = "logs/server.log"
    """Path to log file (default: logs/server.log)"""

    locale: str = "en_GB"
    """Babel locale for amounts and dates in notifications"""

    telegram_bot_token: str | None = None
    """Bot token for Telegram notifications; log-only notifications when unset"""

    quarter_past_count: int = 1
    """Past quarters offered in quarter pickers"""

    quarter_future_count: int = 4
    """Future quarters offered in quarter pickers"""


def _read_count(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from e
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


def load_config() -> FinanceConfig:
    """
    Load configuration from .env file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (DATABASE_URL, LOG_FILE, LOCALE, TELEGRAM_BOT_TOKEN, ...)
    2. .env file in project root
    3. Default values

    Returns:
        FinanceConfig with all settings

    Raises:
        ValueError: If a numeric setting is not a non-negative integer

    Example:
        Create .env file:
        ```
        DATABASE_URL=sqlite+aiosqlite:///./building_finance.db
        QUARTER_FUTURE_COUNT=4
        ```

        Then call:
        ```
        config = load_config()
        ```
    """
    env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    return FinanceConfig(
        database_url=os.getenv("DATABASE_URL", FinanceConfig.database_url),
        log_file=os.getenv("LOG_FILE", FinanceConfig.log_file),
        locale=os.getenv("LOCALE", FinanceConfig.locale),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
        quarter_past_count=_read_count("QUARTER_PAST_COUNT", FinanceConfig.quarter_past_count),
        quarter_future_count=_read_count(
            "QUARTER_FUTURE_COUNT", FinanceConfig.quarter_future_count
        ),
    )


__all__ = ["FinanceConfig", "load_config"]
