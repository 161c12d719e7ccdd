from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from .models import Card, Label, Milestone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeOccurred:
    pass


@dataclass(frozen=True)
class MoveLabelRequested:
    card: Card
    primary_repo_name: str
    label: Label


@dataclass(frozen=True)
class MoveMilestoneRequested:
    card: Card
    primary_repo_name: str
    milestone: Milestone


SyncEvent = ChangeOccurred | MoveLabelRequested | MoveMilestoneRequested
EVENT_TYPES: tuple[type, ...] = (ChangeOccurred, MoveLabelRequested, MoveMilestoneRequested)

E = TypeVar("E", ChangeOccurred, MoveLabelRequested, MoveMilestoneRequested)


class EventBus:
    """Synchronous fan-out of sync events to subscribed handlers."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[[Any], None]]] = {
            event_type: [] for event_type in EVENT_TYPES
        }

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        if event_type not in self._handlers:
            raise ValueError(f"unknown event type: {event_type!r}")
        self._handlers[event_type].append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: type[E], handler: Callable[[E], None]) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, []))

    def emit(self, event: SyncEvent) -> None:
        handlers = list(self._handlers.get(type(event), []))
        logger.debug("emit %s to %d handler(s)", type(event).__name__, len(handlers))
        for handler in handlers:
            handler(event)
