"""Tick-driven evaluation of auto-managed seasonal categories."""

from smartcat.scheduler.scheduler import CategoryScheduler, TickResult

__all__ = ["CategoryScheduler", "TickResult"]
