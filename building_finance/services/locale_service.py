"""Locale service for currency and date formatting in notifications.

Uses babel. The building-local currency is derived from the locale territory.

Configuration:
    LOCALE (from .env or the environment, default: en_GB) - determines currency,
    number and date formatting; read through load_config()

Example:
    >>> from building_finance.services.locale_service import format_amount
    >>> format_amount(Decimal("2800"))
    '£2,800.00'
"""

import logging
from datetime import date
from decimal import Decimal

from babel import Locale, UnknownLocaleError
from babel.dates import format_date as babel_format_date
from babel.numbers import (
    format_currency as babel_format_currency,
)
from babel.numbers import (
    format_decimal as babel_format_decimal,
)
from babel.numbers import (
    get_territory_currencies,
)

from building_finance.services.config import load_config

logger = logging.getLogger(__name__)

# Fallback when the configured locale is invalid
DEFAULT_LOCALE = "en_GB"
DEFAULT_CURRENCY = "GBP"


def _get_locale(locale_str: str | None = None) -> str:
    """Get the configured locale with validation and fallback."""
    if locale_str is None:
        locale_str = load_config().locale
    try:
        Locale.parse(locale_str)
        return locale_str
    except (UnknownLocaleError, ValueError) as e:
        logger.warning("Invalid LOCALE '%s': %s. Falling back to '%s'", locale_str, e, DEFAULT_LOCALE)
        return DEFAULT_LOCALE


def _get_currency_from_locale(locale_str: str) -> str:
    """Derive currency code from locale territory (e.g., 'en_GB' -> 'GBP')."""
    try:
        locale = Locale.parse(locale_str)
        territory = locale.territory
        if territory:
            currencies = get_territory_currencies(territory)
            if currencies:
                return currencies[0]
    except (UnknownLocaleError, ValueError) as e:
        logger.warning("Could not derive currency from locale '%s': %s", locale_str, e)

    return DEFAULT_CURRENCY


# Module-level constants (computed once at import)
LOCALE = _get_locale()
CURRENCY = _get_currency_from_locale(LOCALE)


def format_amount(amount: Decimal, include_symbol: bool = True) -> str:
    """Format monetary amount according to locale.

    Example:
        >>> format_amount(Decimal("1800"))
        '£1,800.00'
        >>> format_amount(Decimal("1800"), include_symbol=False)
        '1,800'
    """
    if include_symbol:
        return babel_format_currency(amount, CURRENCY, locale=LOCALE)
    return babel_format_decimal(amount, locale=LOCALE)


def format_day(day: date) -> str:
    """Format a date in the locale's medium style (e.g., '18 Mar 2024')."""
    return babel_format_date(day, format="medium", locale=LOCALE)


__all__ = ["LOCALE", "CURRENCY", "format_amount", "format_day"]
