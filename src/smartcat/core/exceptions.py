"""
Custom exceptions for smartcat.

Exception hierarchy:
    SmartCatError (base)
    ├── ConfigurationError
    ├── ValidationError
    ├── CalendarConversionError
    └── StoreError
        ├── StoreConflictError
        └── CategoryNotFoundError
"""

from __future__ import annotations

from typing import Any


class SmartCatError(Exception):
    """Base exception for all smartcat errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """
        Initialize the exception.

        Args:
            message: Error message
            details: Additional error details (optional)
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class ConfigurationError(SmartCatError):
    """
    Raised when configuration is invalid or missing.

    Examples:
        - Missing config file passed explicitly
        - Invalid YAML syntax
        - Unknown time zone name
    """

    pass


class ValidationError(SmartCatError):
    """
    Raised when a rule payload does not describe a valid seasonal rule.

    Raised at rule-write time so malformed rules never reach the evaluator.

    Examples:
        - Both lunar and solar months set
        - Date range with start after end
        - Negative day offsets
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize validation error.

        Args:
            message: Error message
            field: Name of the offending payload field (e.g., "lunarMonth")
            details: Additional error details
        """
        super().__init__(message, details)
        self.field = field

    def __str__(self) -> str:
        if self.field:
            return f"[{self.field}] {self.message}"
        return self.message


class CalendarConversionError(SmartCatError):
    """
    Raised when a date or lunar year falls outside the supported range.

    The scheduler skips the category for the current tick and keeps its
    previous status.
    """

    def __init__(
        self,
        message: str,
        value: Any = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.value = value

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.message}: {self.value}"
        return self.message


class StoreError(SmartCatError):
    """
    Raised when the persistence layer is unavailable or fails.

    A driver-level error aborts the whole tick.
    """

    pass


class StoreConflictError(StoreError):
    """Raised when a concurrent writer kept winning the version check."""

    def __init__(
        self,
        message: str,
        category_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.category_id = category_id

    def __str__(self) -> str:
        if self.category_id:
            return f"[{self.category_id}] {self.message}"
        return self.message


class CategoryNotFoundError(StoreError):
    """Raised when a category id does not exist in the store."""

    def __init__(self, category_id: str):
        super().__init__(f"Category not found: {category_id}")
        self.category_id = category_id
