"""
Pub/Sub event bus for loose coupling between components.

The scheduler publishes tick lifecycle events and one batched
"categories changed" event per tick; downstream consumers (category
listing caches, audit dashboards) subscribe without the engine knowing
about them.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

SyncHandler = Callable[[Any], None]
AsyncHandler = Callable[[Any], Any]  # Coroutine
Handler = SyncHandler | AsyncHandler


class EventBus:
    """
    Pub/Sub event bus for component communication.

    Usage:
        bus = EventBus()

        def invalidate(data):
            cache.drop(data["category_ids"])

        bus.subscribe(EventTypes.CATEGORIES_CHANGED, invalidate)
        await bus.publish_async(EventTypes.CATEGORIES_CHANGED, {"category_ids": ["c1"]})
    """

    def __init__(self):
        self._handlers: dict[str, list[SyncHandler]] = defaultdict(list)
        self._async_handlers: dict[str, list[AsyncHandler]] = defaultdict(list)

    def _registry(self, handler: Handler) -> dict[str, list]:
        if inspect.iscoroutinefunction(handler):
            return self._async_handlers
        return self._handlers

    def subscribe(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """
        Subscribe a handler to an event type.

        Args:
            event_type: Event type identifier (e.g., "categories.changed")
            handler: Callback function (sync or async)

        Returns:
            Unsubscribe function
        """
        self._registry(handler)[event_type].append(handler)
        logger.debug("Handler %r subscribed to: %s", handler, event_type)

        def unsubscribe() -> None:
            self.unsubscribe(event_type, handler)

        return unsubscribe

    def unsubscribe(self, event_type: str, handler: Handler) -> bool:
        """
        Unsubscribe a handler from an event type.

        Returns:
            True if handler was found and removed
        """
        try:
            self._registry(handler)[event_type].remove(handler)
        except ValueError:
            return False
        logger.debug("Handler %r unsubscribed from: %s", handler, event_type)
        return True

    def publish(self, event_type: str, data: Any = None) -> int:
        """
        Publish an event to all subscribed sync handlers.

        Note: Async handlers are NOT called. Use publish_async for those.

        Returns:
            Number of handlers called
        """
        handlers = list(self._handlers.get(event_type, []))
        if not handlers:
            logger.debug("No sync handlers for event: %s", event_type)
            return 0

        for handler in handlers:
            self._safe_call(handler, event_type, data)
        return len(handlers)

    async def publish_async(self, event_type: str, data: Any = None) -> int:
        """
        Publish an event to all subscribed handlers (sync and async).

        Handler failures are logged and never reach the publisher.

        Returns:
            Number of handlers called
        """
        sync_handlers = list(self._handlers.get(event_type, []))
        async_handlers = list(self._async_handlers.get(event_type, []))
        total = len(sync_handlers) + len(async_handlers)

        if total == 0:
            logger.debug("No handlers for event: %s", event_type)
            return 0

        logger.debug(
            "Publishing %s to %d sync + %d async handlers",
            event_type,
            len(sync_handlers),
            len(async_handlers),
        )

        for handler in sync_handlers:
            self._safe_call(handler, event_type, data)

        if async_handlers:
            await asyncio.gather(
                *(self._safe_async_call(handler, event_type, data) for handler in async_handlers)
            )

        return total

    @staticmethod
    def _safe_call(handler: SyncHandler, event_type: str, data: Any) -> None:
        try:
            handler(data)
        except Exception as e:
            logger.error("Error in handler for %s: %s", event_type, e, exc_info=True)

    @staticmethod
    async def _safe_async_call(handler: AsyncHandler, event_type: str, data: Any) -> None:
        try:
            await handler(data)
        except Exception as e:
            logger.error("Error in async handler for %s: %s", event_type, e, exc_info=True)

    def clear(self, event_type: str | None = None) -> None:
        """Clear all handlers for an event type, or all handlers if None."""
        if event_type:
            self._handlers.pop(event_type, None)
            self._async_handlers.pop(event_type, None)
        else:
            self._handlers.clear()
            self._async_handlers.clear()

    def handler_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, [])) + len(
            self._async_handlers.get(event_type, [])
        )

    def __repr__(self) -> str:
        total_sync = sum(len(h) for h in self._handlers.values())
        total_async = sum(len(h) for h in self._async_handlers.values())
        return f"EventBus(sync={total_sync}, async={total_async})"


class EventTypes:
    """Standard event type constants."""

    # Payload: {"category_ids", "activated", "deactivated", "as_of", "evaluated_at"}
    CATEGORIES_CHANGED = "categories.changed"

    TICK_STARTED = "tick.started"
    TICK_COMPLETED = "tick.completed"
    TICK_SKIPPED = "tick.skipped"
    TICK_FAILED = "tick.failed"
