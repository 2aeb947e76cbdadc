"""Tabular lunar (Hijri) calendar arithmetic."""

from smartcat.calendar.converter import (
    LUNAR_MONTH_NAMES_AR,
    LUNAR_MONTH_NAMES_EN,
    MAX_LUNAR_YEAR,
    LunarDate,
    from_lunar,
    is_lunar_leap_year,
    lunar_month_length,
    lunar_month_window,
    resolve_lunar_month,
    to_lunar,
)

__all__ = [
    "LUNAR_MONTH_NAMES_AR",
    "LUNAR_MONTH_NAMES_EN",
    "MAX_LUNAR_YEAR",
    "LunarDate",
    "from_lunar",
    "is_lunar_leap_year",
    "lunar_month_length",
    "lunar_month_window",
    "resolve_lunar_month",
    "to_lunar",
]
