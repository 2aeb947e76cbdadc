"""
smartcat - seasonal category activation engine.

Turns seasonal categories on and off from their lunar month, solar month
or date range rules, with an append-only audit log of every flip.
"""

__version__ = "0.1.0"

from smartcat.core.config import Config
from smartcat.core.events import EventBus, EventTypes
from smartcat.core.exceptions import (
    CalendarConversionError,
    CategoryNotFoundError,
    ConfigurationError,
    SmartCatError,
    StoreConflictError,
    StoreError,
    ValidationError,
)
from smartcat.rules.evaluator import evaluate
from smartcat.rules.parser import parse_rule
from smartcat.scheduler.scheduler import CategoryScheduler
from smartcat.store.storage import TransitionStore

__all__ = [
    "__version__",
    "Config",
    "EventBus",
    "EventTypes",
    "SmartCatError",
    "ConfigurationError",
    "ValidationError",
    "CalendarConversionError",
    "StoreError",
    "StoreConflictError",
    "CategoryNotFoundError",
    "CategoryScheduler",
    "TransitionStore",
    "evaluate",
    "parse_rule",
]
