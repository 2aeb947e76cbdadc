"""
Lunar Calendar Converter - Gregorian <-> Hijri (tabular) conversion

Uses the arithmetic ("tabular") Islamic calendar rather than moon
sighting, so every installation computes the same month boundaries:

- Epoch: 1 Muharram 1 AH = Friday 16 July 622 (Julian)
  = 19 July 622 (proleptic Gregorian)
- 30-year cycle with leap years 2, 5, 7, 10, 13, 16, 18, 21, 24, 26, 29
- Odd months have 30 days, even months 29; month 12 has 30 in leap years

Usage:
    from smartcat.calendar.converter import to_lunar, lunar_month_window

    to_lunar(date(2024, 3, 11))
    # LunarDate(year=1445, month=9, day=1)

    lunar_month_window(1445, 9)
    # (date(2024, 3, 11), date(2024, 4, 10))   half-open
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime

from smartcat.core.exceptions import CalendarConversionError, ValidationError

# Python ordinals coincide with Rata Die fixed day numbers
LUNAR_EPOCH = date(622, 7, 19).toordinal()

MIN_LUNAR_YEAR = 1
MAX_LUNAR_YEAR = 2000

DAYS_IN_CYCLE = 10631  # 30 lunar years

LUNAR_MONTH_NAMES_AR = [
    "محرم",
    "صفر",
    "ربيع الأول",
    "ربيع الآخر",
    "جمادى الأولى",
    "جمادى الآخرة",
    "رجب",
    "شعبان",
    "رمضان",
    "شوال",
    "ذو القعدة",
    "ذو الحجة",
]

LUNAR_MONTH_NAMES_EN = [
    "Muharram",
    "Safar",
    "Rabi al-Awwal",
    "Rabi al-Thani",
    "Jumada al-Awwal",
    "Jumada al-Thani",
    "Rajab",
    "Shaban",
    "Ramadan",
    "Shawwal",
    "Dhu al-Qadah",
    "Dhu al-Hijjah",
]

# Common spelling variants seen in admin payloads
_MONTH_ALIASES = {
    "ربيع الثاني": 4,
    "جمادى الثانية": 6,
    "ذو القعدة": 11,
    "ذي القعدة": 11,
    "ذو الحجة": 12,
    "ذي الحجة": 12,
    "rabi al-akhir": 4,
    "jumada al-akhirah": 6,
    "dhul qadah": 11,
    "dhul hijjah": 12,
    "ramadhan": 9,
}

_MONTH_N_PATTERN = re.compile(r"^\s*month\s*(\d{1,2})\s*$", re.IGNORECASE)


def _normalize_name(name: str) -> str:
    return re.sub(r"[\s\-'`’]+", " ", name.strip().lower())


_MONTH_LOOKUP: dict[str, int] = {}
for _index, (_ar, _en) in enumerate(zip(LUNAR_MONTH_NAMES_AR, LUNAR_MONTH_NAMES_EN), start=1):
    _MONTH_LOOKUP[_normalize_name(_ar)] = _index
    _MONTH_LOOKUP[_normalize_name(_en)] = _index
for _alias, _index in _MONTH_ALIASES.items():
    _MONTH_LOOKUP[_normalize_name(_alias)] = _index


@dataclass(frozen=True, order=True)
class LunarDate:
    """A date in the tabular Hijri calendar."""

    year: int
    month: int
    day: int

    @property
    def month_name(self) -> str:
        return LUNAR_MONTH_NAMES_AR[self.month - 1]

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d} AH"


def is_lunar_leap_year(year: int) -> bool:
    """Whether the lunar year has 355 days."""
    return (14 + 11 * year) % 30 < 11


def lunar_month_length(year: int, month: int) -> int:
    """Number of days in a lunar month (29 or 30)."""
    _check_month(month)
    if month % 2 == 1:
        return 30
    if month == 12 and is_lunar_leap_year(year):
        return 30
    return 29


def _check_year(year: int) -> None:
    if not MIN_LUNAR_YEAR <= year <= MAX_LUNAR_YEAR:
        raise CalendarConversionError(
            f"Lunar year outside supported range {MIN_LUNAR_YEAR}-{MAX_LUNAR_YEAR}",
            value=year,
        )


def _check_month(month: int) -> None:
    if not 1 <= month <= 12:
        raise CalendarConversionError("Lunar month must be 1-12", value=month)


def _fixed_from_lunar(year: int, month: int, day: int) -> int:
    return (
        day
        + 29 * (month - 1)
        + (6 * month - 1) // 11
        + (year - 1) * 354
        + (3 + 11 * year) // 30
        + LUNAR_EPOCH
        - 1
    )


def from_lunar(year: int, month: int, day: int) -> date:
    """
    Convert a lunar date to its Gregorian date.

    Raises:
        CalendarConversionError: year, month or day outside the calendar
    """
    _check_year(year)
    if not 1 <= day <= lunar_month_length(year, month):
        raise CalendarConversionError(
            f"Day outside lunar month {year}-{month:02d}", value=day
        )
    return date.fromordinal(_fixed_from_lunar(year, month, day))


def to_lunar(gregorian: date) -> LunarDate:
    """
    Convert a Gregorian date to its tabular lunar date.

    Args:
        gregorian: Calendar date (a datetime is rejected to avoid
            time-of-day ambiguity)

    Returns:
        LunarDate

    Raises:
        CalendarConversionError: date before the epoch or after MAX_LUNAR_YEAR
    """
    if isinstance(gregorian, datetime) or not isinstance(gregorian, date):
        raise TypeError(f"to_lunar expects a datetime.date, got {type(gregorian).__name__}")

    fixed = gregorian.toordinal()
    year = (30 * (fixed - LUNAR_EPOCH) + 10646) // DAYS_IN_CYCLE
    if fixed < LUNAR_EPOCH or year > MAX_LUNAR_YEAR:
        raise CalendarConversionError("Date outside supported lunar range", value=gregorian)

    prior_days = fixed - _fixed_from_lunar(year, 1, 1)
    month = (11 * prior_days + 330) // 325
    day = fixed - _fixed_from_lunar(year, month, 1) + 1
    return LunarDate(year, month, day)


def lunar_month_window(year: int, month: int) -> tuple[date, date]:
    """
    Gregorian span of a lunar month.

    Returns:
        (start, end) where end is exclusive: the first day of the following month
    """
    _check_year(year)
    _check_month(month)
    start = _fixed_from_lunar(year, month, 1)
    try:
        return date.fromordinal(start), date.fromordinal(start + lunar_month_length(year, month))
    except (ValueError, OverflowError) as e:
        raise CalendarConversionError("Lunar month outside date range", value=(year, month)) from e


def resolve_lunar_month(value: int | str) -> int:
    """
    Turn an admin-supplied month reference into a month number.

    Accepts 9, "9", "month 9", "رمضان" and "Ramadan".

    Raises:
        ValidationError: unknown name or number outside 1-12
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid lunar month: {value!r}", field="lunarMonth")

    if isinstance(value, int):
        month = value
    elif isinstance(value, str):
        text = value.strip()
        match = _MONTH_N_PATTERN.match(text)
        if match:
            month = int(match.group(1))
        elif text.isdigit():
            month = int(text)
        else:
            month = _MONTH_LOOKUP.get(_normalize_name(text), 0)
            if not month:
                raise ValidationError(f"Unknown lunar month name: {value!r}", field="lunarMonth")
    else:
        raise ValidationError(f"Invalid lunar month: {value!r}", field="lunarMonth")

    if not 1 <= month <= 12:
        raise ValidationError(f"Lunar month must be 1-12, got {month}", field="lunarMonth")
    return month
