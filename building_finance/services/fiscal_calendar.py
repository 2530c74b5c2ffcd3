"""Fiscal calendar: billing quarters derived from a building's fiscal year anchor.

The anchor is a month/day pair with no year. For any "as of" date the current
fiscal year is the latest one whose start is on or before that date, and its
four quarters start 0, 3, 6 and 9 months after the fiscal year start.

Anchor days that do not exist in a given month (29/30/31) are clamped to the
month's last day, always starting from the anchor day rather than from the
previous quarter's clamped day. An anchor of Feb 29 therefore starts on Feb 28
in non-leap years while its second quarter still starts on May 29.

This module is the only place quarter boundaries are computed.

Example:
    >>> anchor = FiscalYearAnchor(month=4, day=1)
    >>> current_quarter(anchor, date(2024, 5, 15)).display_string
    'Q1 FY24/25'
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from building_finance.services.errors import InvalidQuarterSelection

QUARTERS_PER_YEAR = 4
MONTHS_PER_QUARTER = 3

# Sortable quarter key: fiscal start year + quarter number, e.g. "2024-Q1"
QUARTER_KEY_PATTERN = re.compile(r"^(?P<year>\d{4})-Q(?P<quarter>[1-4])$")

# Any leap year works for validating the largest day a month can have
_LEAP_YEAR = 2000


@dataclass(frozen=True)
class FiscalYearAnchor:
    """Month and day on which a building's fiscal year begins."""

    month: int
    day: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Fiscal year anchor month must be 1-12, got {self.month}")
        max_day = calendar.monthrange(_LEAP_YEAR, self.month)[1]
        if not 1 <= self.day <= max_day:
            raise ValueError(
                f"Fiscal year anchor day must be 1-{max_day} for month {self.month}, got {self.day}"
            )

    def date_in_year(self, year: int) -> date:
        """Fiscal year start for the given calendar year, clamped to the month end."""
        return date(year, self.month, 1) + relativedelta(day=self.day)


DEFAULT_ANCHOR = FiscalYearAnchor(month=4, day=1)


@dataclass(frozen=True)
class QuarterDescriptor:
    """A computed three-month billing period. Never persisted."""

    fiscal_year_start_year: int
    quarter_number: int
    start_date: date
    end_date: date
    """Exclusive: the start of the following quarter."""
    fiscal_year_label: str
    is_past: bool

    @property
    def display_string(self) -> str:
        return f"Q{self.quarter_number} {self.fiscal_year_label}"

    @property
    def key(self) -> str:
        return f"{self.fiscal_year_start_year:04d}-Q{self.quarter_number}"

    @property
    def value(self) -> str:
        return self.start_date.isoformat()

    @property
    def last_day(self) -> date:
        return self.end_date - timedelta(days=1)

    @property
    def label(self) -> str:
        last = self.last_day
        return (
            f"{self.display_string} ({self.start_date:%b} {self.start_date.day} - "
            f"{last:%b} {last.day}, {last.year})"
        )

    @property
    def is_first_quarter(self) -> bool:
        """Ground rent is billed with first-quarter demands only."""
        return self.quarter_number == 1

    def contains(self, day: date) -> bool:
        return self.start_date <= day < self.end_date


def quarter_start(anchor: FiscalYearAnchor, fiscal_year_start_year: int, quarter_index: int) -> date:
    """Start date of the quarter ``quarter_index`` (0-based, may overflow into later years)."""
    # relativedelta clamps the anchor day to the target month's last day
    return date(fiscal_year_start_year, anchor.month, 1) + relativedelta(
        months=quarter_index * MONTHS_PER_QUARTER, day=anchor.day
    )


def fiscal_year_start(anchor: FiscalYearAnchor, as_of: date) -> date:
    """Start of the fiscal year containing ``as_of``."""
    candidate = anchor.date_in_year(as_of.year)
    if as_of < candidate:
        candidate = anchor.date_in_year(as_of.year - 1)
    return candidate


def fiscal_year_label(anchor: FiscalYearAnchor, fiscal_year_start_year: int) -> str:
    """Label such as "FY24/25", or "FY2024" when the fiscal year is a calendar year."""
    # Only a January 1 anchor keeps the whole fiscal year inside one calendar year
    if (anchor.month, anchor.day) == (1, 1):
        return f"FY{fiscal_year_start_year}"
    return f"FY{fiscal_year_start_year % 100:02d}/{(fiscal_year_start_year + 1) % 100:02d}"


def quarter_for(
    anchor: FiscalYearAnchor,
    fiscal_year_start_year: int,
    quarter_number: int,
    as_of: date,
) -> QuarterDescriptor:
    """Build the descriptor for quarter 1-4 of the fiscal year starting in the given year.

    Raises:
        InvalidQuarterSelection: If the quarter falls outside years 1-9999
    """
    if not 1 <= quarter_number <= QUARTERS_PER_YEAR:
        raise ValueError(f"Quarter number must be 1-4, got {quarter_number}")

    try:
        start = quarter_start(anchor, fiscal_year_start_year, quarter_number - 1)
        end = quarter_start(anchor, fiscal_year_start_year, quarter_number)
        label = fiscal_year_label(anchor, fiscal_year_start_year)
    except ValueError as e:
        raise InvalidQuarterSelection(
            f"Q{quarter_number} of the fiscal year starting {fiscal_year_start_year} "
            f"falls outside the supported date range"
        ) from e
    return QuarterDescriptor(
        fiscal_year_start_year=fiscal_year_start_year,
        quarter_number=quarter_number,
        start_date=start,
        end_date=end,
        fiscal_year_label=label,
        is_past=end <= as_of,
    )


def _current_position(anchor: FiscalYearAnchor, as_of: date) -> tuple[int, int]:
    """Return (fiscal start year, 0-based quarter index) for ``as_of``.

    Equivalent to floor(months since fiscal year start / 3) clamped to [0, 3],
    evaluated against clamped quarter starts so month-end anchors stay consistent.
    """
    try:
        year = fiscal_year_start(anchor, as_of).year
        index = 0
        for candidate in range(1, QUARTERS_PER_YEAR):
            if quarter_start(anchor, year, candidate) <= as_of:
                index = candidate
    except ValueError as e:
        raise InvalidQuarterSelection(
            f"The fiscal year containing {as_of.isoformat()} falls outside the supported date range"
        ) from e
    return year, index


def current_quarter(anchor: FiscalYearAnchor, as_of: date) -> QuarterDescriptor:
    year, index = _current_position(anchor, as_of)
    return quarter_for(anchor, year, index + 1, as_of)


def enumerate_quarters(
    anchor: FiscalYearAnchor,
    as_of: date,
    past_count: int = 1,
    future_count: int = 4,
) -> list[QuarterDescriptor]:
    """List quarters around the current one, ascending by start date.

    Always returns ``past_count + future_count + 1`` quarters: the current one,
    ``past_count`` before it and ``future_count`` after it.

    Raises:
        ValueError: If either count is negative
        InvalidQuarterSelection: If a listed quarter falls outside years 1-9999
    """
    if past_count < 0 or future_count < 0:
        raise ValueError("past_count and future_count must not be negative")

    year, index = _current_position(anchor, as_of)
    quarters = []
    for offset in range(-past_count, future_count + 1):
        year_offset, quarter_index = divmod(index + offset, QUARTERS_PER_YEAR)
        quarters.append(quarter_for(anchor, year + year_offset, quarter_index + 1, as_of))
    return quarters


def quarters_of_fiscal_year(
    anchor: FiscalYearAnchor, fiscal_year_start_year: int, as_of: date
) -> list[QuarterDescriptor]:
    return [
        quarter_for(anchor, fiscal_year_start_year, number, as_of)
        for number in range(1, QUARTERS_PER_YEAR + 1)
    ]


def parse_quarter_value(anchor: FiscalYearAnchor, value: str, as_of: date) -> QuarterDescriptor:
    """Resolve a quarter key ("2024-Q1") or quarter start date ("2024-04-01").

    Raises:
        InvalidQuarterSelection: If the value is malformed or is not the start
            of a quarter in this fiscal calendar
    """
    value = (value or "").strip()
    match = QUARTER_KEY_PATTERN.match(value)
    if match:
        return quarter_for(anchor, int(match.group("year")), int(match.group("quarter")), as_of)

    try:
        requested = date.fromisoformat(value)
    except ValueError as e:
        raise InvalidQuarterSelection(
            f"Quarter '{value}' is neither a quarter key (YYYY-Qn) nor an ISO date"
        ) from e

    quarter = current_quarter(anchor, requested)
    if quarter.start_date != requested:
        raise InvalidQuarterSelection(
            f"{requested.isoformat()} is not a quarter start date; "
            f"the enclosing quarter starts {quarter.start_date.isoformat()}"
        )
    return quarter_for(anchor, quarter.fiscal_year_start_year, quarter.quarter_number, as_of)


__all__ = [
    "FiscalYearAnchor",
    "DEFAULT_ANCHOR",
    "QuarterDescriptor",
    "QUARTER_KEY_PATTERN",
    "quarter_start",
    "fiscal_year_start",
    "fiscal_year_label",
    "quarter_for",
    "current_quarter",
    "enumerate_quarters",
    "quarters_of_fiscal_year",
    "parse_quarter_value",
]
