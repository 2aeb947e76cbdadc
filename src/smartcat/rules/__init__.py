"""Seasonal rule model, parsing and evaluation."""

from smartcat.rules.evaluator import FAR_FUTURE, Evaluation, evaluate
from smartcat.rules.models import (
    AUTO_YEAR,
    Category,
    CategoryStatus,
    CategoryType,
    DateRangeRule,
    LunarRule,
    NoRule,
    SeasonalRule,
    SolarRule,
    TransitionRecord,
)
from smartcat.rules.parser import MAX_OFFSET_DAYS, parse_rule, rule_from_dict

__all__ = [
    "AUTO_YEAR",
    "FAR_FUTURE",
    "MAX_OFFSET_DAYS",
    "Category",
    "CategoryStatus",
    "CategoryType",
    "DateRangeRule",
    "Evaluation",
    "LunarRule",
    "NoRule",
    "SeasonalRule",
    "SolarRule",
    "TransitionRecord",
    "evaluate",
    "parse_rule",
    "rule_from_dict",
]
