"""Unit tests for locale-aware formatting."""

from datetime import date
from decimal import Decimal

from building_finance.services.locale_service import (
    CURRENCY,
    DEFAULT_LOCALE,
    _get_currency_from_locale,
    _get_locale,
    format_amount,
    format_day,
)


class TestLocaleFormatting:
    """Formatting under the default en_GB locale."""

    def test_currency_from_territory(self):
        assert CURRENCY == "GBP"

    def test_format_amount(self):
        assert format_amount(Decimal("2800")) == "£2,800.00"

    def test_format_amount_without_symbol(self):
        assert format_amount(Decimal("1800"), include_symbol=False) == "1,800"

    def test_format_day(self):
        assert format_day(date(2024, 3, 18)) == "18 Mar 2024"


class TestConfiguredLocale:
    """The locale comes from the finance configuration."""

    def test_locale_from_env_file(self, monkeypatch, tmp_path):
        monkeypatch.delenv("LOCALE", raising=False)
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("LOCALE=de_DE\n")

        assert _get_locale() == "de_DE"

    def test_locale_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("LOCALE", "fr_FR")

        assert _get_locale() == "fr_FR"
        assert _get_currency_from_locale(_get_locale()) == "EUR"

    def test_invalid_locale_falls_back(self):
        assert _get_locale("xx_NOPE") == DEFAULT_LOCALE
