"""
Rule evaluation: should a category be active on a given date?

evaluate() is pure. The reference date is always passed in; nothing here
reads the clock, so re-evaluating the same (rule, as_of) pair always gives
the same answer and the scheduler can call it as often as it likes.

Windows are inclusive calendar-date spans:

    [first day of period - activate_days_before,
     last day of period + deactivate_days_after]

For recurring rules the neighbouring occurrences (previous, current, next
period) are computed in a bounded loop and unioned when they touch, so a
long lag from one year that meets the lead of the next reads as one
continuous active span.
"""

from __future__ import annotations

import calendar
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from smartcat.calendar.converter import lunar_month_window, to_lunar
from smartcat.core.exceptions import CalendarConversionError
from smartcat.rules.models import (
    DateRangeRule,
    LunarRule,
    NoRule,
    SeasonalRule,
    SolarRule,
)

FAR_FUTURE = date.max

ONE_DAY = timedelta(days=1)

Span = tuple[date, date]


@dataclass(frozen=True)
class Evaluation:
    """
    Result of evaluating one rule on one date.

    Attributes:
        desired_active: Whether the category should be active on as_of
        window_start: First active day of the matched window (None for NoRule)
        window_end: Last active day of the matched window, inclusive
        next_check_at: Earliest date on which the answer can change

    For recurring rules the window is the union of at most three
    neighbouring occurrences. When wide offsets make every one of them
    touch, window_end (and so next_check_at) is the end of the next
    occurrence, not of the whole continuous season; evaluating again on
    that date gives the correct answer and a later boundary.
    """
    desired_active: bool
    window_start: date | None
    window_end: date | None
    next_check_at: date

    def to_dict(self) -> dict:
        return {
            "desired_active": self.desired_active,
            "window_start": self.window_start.isoformat() if self.window_start else None,
            "window_end": self.window_end.isoformat() if self.window_end else None,
            "next_check_at": self.next_check_at.isoformat(),
        }


def _expand(first_day: date, last_day: date, rule: SeasonalRule) -> Span:
    try:
        return (
            first_day - timedelta(days=rule.activate_days_before),
            last_day + timedelta(days=rule.deactivate_days_after),
        )
    except OverflowError as e:
        raise CalendarConversionError("Window offsets leave the date range", value=first_day) from e


def _after(day: date) -> date:
    """Day after, saturating at FAR_FUTURE."""
    if day >= FAR_FUTURE:
        return FAR_FUTURE
    return day + ONE_DAY


def _union(spans: list[Span]) -> list[Span]:
    """Merge overlapping or touching spans."""
    merged: list[Span] = []
    for start, end in sorted(spans):
        if merged and start <= _after(merged[-1][1]):
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def _decide(span: Span | None, as_of: date) -> Evaluation:
    if span is None:
        return Evaluation(False, None, None, FAR_FUTURE)

    start, end = span
    if as_of < start:
        return Evaluation(False, start, end, start)
    if as_of <= end:
        return Evaluation(True, start, end, _after(end))
    # Window is over and will not recur
    return Evaluation(False, start, end, FAR_FUTURE)


def _lunar_span(rule: LunarRule, year: int) -> Span:
    start, end = lunar_month_window(year, rule.month)
    return _expand(start, end - ONE_DAY, rule)


def _solar_span(rule: SolarRule, year: int) -> Span:
    if not date.min.year <= year <= date.max.year:
        raise CalendarConversionError("Year outside the Gregorian date range", value=year)
    last_day = calendar.monthrange(year, rule.month)[1]
    return _expand(date(year, rule.month, 1), date(year, rule.month, last_day), rule)


def _recurring(span_for: Callable[[int], Span], anchor: int, as_of: date) -> Span:
    """
    Nearest current-or-future window around an anchor period.

    The previous period is included because its lag can run past the
    anchor's start; the next period covers the roll-forward once the
    anchor's window has ended. Offsets are capped well below one period,
    so nothing further away can reach as_of.
    """
    spans = []
    for period in (anchor - 1, anchor, anchor + 1):
        try:
            spans.append(span_for(period))
        except CalendarConversionError:
            # Edges of the supported range; the anchor itself must convert
            if period == anchor:
                raise

    for start, end in _union(spans):
        if end >= as_of:
            return start, end

    raise CalendarConversionError("No upcoming window within the supported range", value=as_of)


def evaluate(rule: SeasonalRule, as_of: date) -> Evaluation:
    """
    Compute the desired state of a category on a calendar date.

    Args:
        rule: Typed seasonal rule
        as_of: Reference calendar date in the canonical time zone

    Returns:
        Evaluation

    Raises:
        CalendarConversionError: as_of or the rule's window falls outside
            the supported calendar range
    """
    if isinstance(as_of, datetime) or not isinstance(as_of, date):
        raise TypeError(f"as_of must be a datetime.date, got {type(as_of).__name__}")

    # Date range first: it short-circuits any month matching
    if isinstance(rule, DateRangeRule):
        return _decide(_expand(rule.start, rule.end, rule), as_of)

    if isinstance(rule, LunarRule):
        if not rule.recurring:
            return _decide(_lunar_span(rule, rule.year), as_of)
        anchor = to_lunar(as_of).year
        return _decide(_recurring(lambda year: _lunar_span(rule, year), anchor, as_of), as_of)

    if isinstance(rule, SolarRule):
        span = _recurring(lambda year: _solar_span(rule, year), as_of.year, as_of)
        return _decide(span, as_of)

    if isinstance(rule, NoRule):
        return _decide(None, as_of)

    raise TypeError(f"Unsupported rule type: {type(rule).__name__}")
