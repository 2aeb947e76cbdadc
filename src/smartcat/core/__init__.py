"""Core modules for smartcat."""

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

__all__ = [
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
]
