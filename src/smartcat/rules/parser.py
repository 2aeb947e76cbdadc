"""
Rule payload parsing and validation.

Admin payloads are loosely shaped (optional, mutually exclusive fields,
camelCase from the web admin or snake_case from scripts). They are turned
into a typed SeasonalRule exactly once, at rule-write time, so the
evaluator never re-inspects which fields are present.

Accepted payload:
    {
        "dateRange": {"start": "2025-03-01", "end": "2025-03-31"},
        "lunarMonth": "رمضان" | "month 9" | 9,      # alias: hijriMonth
        "lunarYear": "auto" | 1446,                  # alias: hijriYear
        "solarMonth": 3,                             # alias: gregorianMonth
        "activateDaysBefore": 3,
        "deactivateDaysAfter": 1
    }
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Mapping

from smartcat.calendar.converter import MAX_LUNAR_YEAR, resolve_lunar_month
from smartcat.core.exceptions import ValidationError
from smartcat.rules.models import (
    AUTO_YEAR,
    DateRangeRule,
    LunarRule,
    NoRule,
    SeasonalRule,
    SolarRule,
)

logger = logging.getLogger(__name__)

# Keeps adjacent yearly windows from reaching two occurrences away
MAX_OFFSET_DAYS = 180

_ALIASES = {
    "dateRange": ("dateRange", "date_range"),
    "lunarMonth": ("lunarMonth", "lunar_month", "hijriMonth", "hijri_month"),
    "lunarYear": ("lunarYear", "lunar_year", "hijriYear", "hijri_year"),
    "solarMonth": ("solarMonth", "solar_month", "gregorianMonth", "gregorian_month"),
    "activateDaysBefore": ("activateDaysBefore", "activate_days_before"),
    "deactivateDaysAfter": ("deactivateDaysAfter", "deactivate_days_after"),
}


def _pick(payload: Mapping[str, Any], name: str) -> Any:
    """First non-empty value among a field's aliases."""
    for key in _ALIASES[name]:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


def _parse_offset(payload: Mapping[str, Any], name: str) -> int:
    value = _pick(payload, name)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value)
        else:
            raise ValidationError(f"Day offset must be an integer, got {value!r}", field=name)
    if value < 0:
        raise ValidationError(f"Day offset must be non-negative, got {value}", field=name)
    if value > MAX_OFFSET_DAYS:
        raise ValidationError(
            f"Day offset must be at most {MAX_OFFSET_DAYS}, got {value}", field=name
        )
    return value


def _parse_date(value: Any, field: str) -> date:
    if isinstance(value, date):
        # datetime is a date subclass; keep only the calendar date
        return date(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as e:
            raise ValidationError(f"Invalid ISO date: {value!r}", field=field) from e
    raise ValidationError(f"Invalid date: {value!r}", field=field)


def _parse_solar_month(value: Any) -> int:
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 12:
        raise ValidationError(f"Solar month must be 1-12, got {value!r}", field="solarMonth")
    return value


def _parse_lunar_year(value: Any) -> int | str:
    if value is None:
        return AUTO_YEAR
    if isinstance(value, str):
        text = value.strip().lower()
        if text == AUTO_YEAR:
            return AUTO_YEAR
        if not text.isdigit():
            raise ValidationError(
                f'Lunar year must be "auto" or an integer, got {value!r}', field="lunarYear"
            )
        value = int(text)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f'Lunar year must be "auto" or an integer, got {value!r}', field="lunarYear"
        )
    if not 1 <= value <= MAX_LUNAR_YEAR:
        raise ValidationError(
            f"Lunar year must be between 1 and {MAX_LUNAR_YEAR}, got {value}", field="lunarYear"
        )
    return value


def parse_rule(payload: Mapping[str, Any] | None) -> SeasonalRule:
    """
    Translate an admin rule payload into a typed rule.

    Args:
        payload: Rule payload, or None/{} for "no rule"

    Returns:
        DateRangeRule, LunarRule, SolarRule or NoRule

    Raises:
        ValidationError: payload does not describe a valid rule
    """
    if not payload:
        return NoRule()
    if not isinstance(payload, Mapping):
        raise ValidationError(f"Rule payload must be an object, got {type(payload).__name__}")

    before = _parse_offset(payload, "activateDaysBefore")
    after = _parse_offset(payload, "deactivateDaysAfter")

    lunar_month = _pick(payload, "lunarMonth")
    solar_month = _pick(payload, "solarMonth")
    if lunar_month is not None and solar_month is not None:
        raise ValidationError(
            "Lunar and solar months are mutually exclusive", field="solarMonth"
        )

    date_range = _pick(payload, "dateRange")
    if date_range is not None:
        if not isinstance(date_range, Mapping):
            raise ValidationError("dateRange must be an object", field="dateRange")
        start = _parse_date(date_range.get("start"), "dateRange.start")
        end = _parse_date(date_range.get("end"), "dateRange.end")
        if start > end:
            raise ValidationError(
                f"Date range start {start} is after end {end}", field="dateRange"
            )
        if lunar_month is not None or solar_month is not None:
            logger.debug("Rule has both a date range and a month; date range wins")
        return DateRangeRule(start, end, before, after)

    if lunar_month is not None:
        return LunarRule(
            month=resolve_lunar_month(lunar_month),
            year=_parse_lunar_year(_pick(payload, "lunarYear")),
            activate_days_before=before,
            deactivate_days_after=after,
        )

    if solar_month is not None:
        return SolarRule(_parse_solar_month(solar_month), before, after)

    return NoRule(before, after)


def rule_from_dict(data: Mapping[str, Any]) -> SeasonalRule:
    """Rebuild a rule from its own to_dict() snapshot."""
    kind = data.get("kind")
    before = data.get("activate_days_before", 0)
    after = data.get("deactivate_days_after", 0)

    if kind == "date_range":
        return DateRangeRule(
            date.fromisoformat(data["start"]), date.fromisoformat(data["end"]), before, after
        )
    if kind == "lunar":
        return LunarRule(data["month"], data.get("year", AUTO_YEAR), before, after)
    if kind == "solar":
        return SolarRule(data["month"], before, after)
    if kind == "none":
        return NoRule(before, after)
    raise ValidationError(f"Unknown rule kind: {kind!r}", field="kind")
