"""Event emitter for publishing domain events.

The emitter provides:
- Handler registration with type filtering
- Category-based routing
- Error isolation (handler failures don't break other handlers)
- Event batching so events leave only after the ledger write commits
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, TypeVar

from obligation_ledger.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainEvent)

EventHandler = Callable[[DomainEvent], None]


@dataclass
class HandlerRegistration:
    """Registration of an event handler."""

    handler: EventHandler
    event_types: set[str] | None  # None = all events
    categories: set[EventCategory] | None  # None = all categories

    def matches(self, event: DomainEvent) -> bool:
        if self.event_types is not None and event.event_type not in self.event_types:
            return False
        if self.categories is not None and event.category not in self.categories:
            return False
        return True


class EventBatch:
    """Events collected inside a transaction, published on success."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def add(self, event: DomainEvent) -> None:
        self.events.append(event)


class EventEmitter:
    """Synchronous event emitter.

    Publishes events to registered handlers. Handlers are isolated -
    if one fails, others still receive the event.

    Usage:
        emitter = EventEmitter()
        emitter.on(LateFeeCharged, notify_tenant)
        emitter.on_category(EventCategory.TRUST, audit_log)

        with emitter.batch() as batch:
            with store.transaction() as session:
                ...
                batch.add(event)
        # Events emitted only if the block exits without error
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []

    def on(self, event_type: type[T] | list[type[T]], handler: EventHandler) -> None:
        """Register handler for specific event type(s)."""
        if isinstance(event_type, list):
            types = {t.__name__ for t in event_type}
        else:
            types = {event_type.__name__}
        self._handlers.append(
            HandlerRegistration(handler=handler, event_types=types, categories=None)
        )

    def on_category(
        self,
        category: EventCategory | list[EventCategory],
        handler: EventHandler,
    ) -> None:
        """Register handler for event category(ies)."""
        cats = set(category) if isinstance(category, list) else {category}
        self._handlers.append(
            HandlerRegistration(handler=handler, event_types=None, categories=cats)
        )

    def on_all(self, handler: EventHandler) -> None:
        """Register handler for all events."""
        self._handlers.append(
            HandlerRegistration(handler=handler, event_types=None, categories=None)
        )

    def off(self, handler: EventHandler) -> None:
        """Unregister a handler."""
        self._handlers = [reg for reg in self._handlers if reg.handler is not handler]

    def emit(self, event: DomainEvent) -> int:
        """Publish an event to matching handlers.

        Returns the number of handlers that completed without raising.
        """
        delivered = 0
        for reg in self._handlers:
            if not reg.matches(event):
                continue
            try:
                reg.handler(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Event handler %r failed for %s %s",
                    reg.handler,
                    event.event_type,
                    event.metadata.event_id,
                )
        return delivered

    def emit_all(self, events: list[DomainEvent]) -> None:
        for event in events:
            self.emit(event)

    @contextmanager
    def batch(self) -> Iterator[EventBatch]:
        """Collect events and emit them only if the block succeeds."""
        batch = EventBatch()
        yield batch
        self.emit_all(batch.events)
