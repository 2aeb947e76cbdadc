"""
Category and seasonal rule data models.

SeasonalRule is a tagged variant: exactly one of DateRangeRule, LunarRule,
SolarRule or NoRule. Every variant carries the lead/lag day offsets.
Rules are built from admin payloads by smartcat.rules.parser; the
evaluator only ever sees these typed objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Literal, Union

AUTO_YEAR = "auto"


class CategoryType(Enum):
    """Category kinds; only seasonal categories are managed by the engine."""
    CORE = "core"
    SMART = "smart"
    DYNAMIC = "dynamic"
    SEASONAL = "seasonal"


class CategoryStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"

    @classmethod
    def from_active(cls, active: bool) -> "CategoryStatus":
        return cls.ACTIVE if active else cls.INACTIVE

    @property
    def is_active(self) -> bool:
        return self is CategoryStatus.ACTIVE


@dataclass(frozen=True)
class DateRangeRule:
    """Explicit inclusive date range; takes precedence over month rules."""
    start: date
    end: date
    activate_days_before: int = 0
    deactivate_days_after: int = 0
    kind: Literal["date_range"] = field(default="date_range", init=False)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "activate_days_before": self.activate_days_before,
            "deactivate_days_after": self.deactivate_days_after,
        }


@dataclass(frozen=True)
class LunarRule:
    """Lunar (Hijri) month, recurring when year is "auto"."""
    month: int
    year: int | Literal["auto"] = AUTO_YEAR
    activate_days_before: int = 0
    deactivate_days_after: int = 0
    kind: Literal["lunar"] = field(default="lunar", init=False)

    @property
    def recurring(self) -> bool:
        return self.year == AUTO_YEAR

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "month": self.month,
            "year": self.year,
            "activate_days_before": self.activate_days_before,
            "deactivate_days_after": self.deactivate_days_after,
        }


@dataclass(frozen=True)
class SolarRule:
    """Gregorian month, recurring every year."""
    month: int
    activate_days_before: int = 0
    deactivate_days_after: int = 0
    kind: Literal["solar"] = field(default="solar", init=False)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "month": self.month,
            "activate_days_before": self.activate_days_before,
            "deactivate_days_after": self.deactivate_days_after,
        }


@dataclass(frozen=True)
class NoRule:
    """No season configured; the category is never auto-activated."""
    activate_days_before: int = 0
    deactivate_days_after: int = 0
    kind: Literal["none"] = field(default="none", init=False)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "activate_days_before": self.activate_days_before,
            "deactivate_days_after": self.deactivate_days_after,
        }


SeasonalRule = Union[DateRangeRule, LunarRule, SolarRule, NoRule]


@dataclass
class Category:
    """
    Category record as persisted by the store.

    Attributes:
        id: Unique category id
        slug: URL slug (unique)
        name_ar: Arabic display name
        name_en: English display name
        type: Category kind
        status: Current visibility
        auto_activate: Whether the engine owns status for this category
        rule_payload: Rule as written by the admin surface (may be None)
        display_order: Sort key for listings
        last_evaluated_at: When the engine last evaluated the category
        last_transition_at: When the engine last flipped its status
        version: Optimistic concurrency counter
    """
    id: str
    slug: str
    name_ar: str
    name_en: str = ""
    type: CategoryType = CategoryType.SEASONAL
    status: CategoryStatus = CategoryStatus.INACTIVE
    auto_activate: bool = False
    rule_payload: dict[str, Any] | None = None
    display_order: int = 0
    last_evaluated_at: datetime | None = None
    last_transition_at: datetime | None = None
    version: int = 0

    def __post_init__(self):
        """Accept plain strings for enums and timestamps."""
        if isinstance(self.type, str):
            self.type = CategoryType(self.type)
        if isinstance(self.status, str):
            self.status = CategoryStatus(self.status)
        if isinstance(self.last_evaluated_at, str):
            self.last_evaluated_at = datetime.fromisoformat(self.last_evaluated_at)
        if isinstance(self.last_transition_at, str):
            self.last_transition_at = datetime.fromisoformat(self.last_transition_at)

    @property
    def is_managed(self) -> bool:
        return self.type is CategoryType.SEASONAL and self.auto_activate

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "name_ar": self.name_ar,
            "name_en": self.name_en,
            "type": self.type.value,
            "status": self.status.value,
            "auto_activate": self.auto_activate,
            "rule": self.rule_payload,
            "display_order": self.display_order,
            "last_evaluated_at": self.last_evaluated_at.isoformat() if self.last_evaluated_at else None,
            "last_transition_at": self.last_transition_at.isoformat() if self.last_transition_at else None,
            "version": self.version,
        }


@dataclass(frozen=True)
class TransitionRecord:
    """One status flip, append-only audit entry."""
    category_id: str
    from_status: CategoryStatus
    to_status: CategoryStatus
    evaluated_at: datetime
    rule_snapshot: dict[str, Any]
    id: int | None = None
    recorded_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "evaluated_at": self.evaluated_at.isoformat(),
            "rule_snapshot": self.rule_snapshot,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }
