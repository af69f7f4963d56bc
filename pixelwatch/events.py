"""Typed engine events and a small publish/subscribe bus."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel, Field

from pixelwatch.models.snapshot import CheckResult, Target, utc_now

logger = logging.getLogger(__name__)


class MonitorEvent(BaseModel):
    name: str = "event"
    timestamp: str = Field(default_factory=utc_now)


class Started(MonitorEvent):
    name: str = "started"
    schedule: str
    targets: int


class Stopped(MonitorEvent):
    name: str = "stopped"


class BaselinesCreated(MonitorEvent):
    name: str = "baselines-created"
    count: int
    failed: int = 0


class BaselineUpdated(MonitorEvent):
    name: str = "baseline-updated"
    url: Optional[str] = None
    viewport: Optional[str] = None
    selector: Optional[str] = None
    count: int = 0


class CheckCompleted(MonitorEvent):
    name: str = "check-completed"
    results: list[CheckResult]


class VisualRegressionDetected(MonitorEvent):
    name: str = "visual-regression-detected"
    target: Target
    diff_ratio: float
    diff_image_ref: Optional[str] = None


class EngineError(MonitorEvent):
    name: str = "error"
    cause: str


E = TypeVar("E", bound=MonitorEvent)


class EventBus:
    """Delivers events to handlers subscribed to the event's class (or a base class)."""

    def __init__(self) -> None:
        self._handlers: dict[type[MonitorEvent], list[Callable]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register ``handler``; returns a function that unsubscribes it."""
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[event_type]:
                self._handlers[event_type].remove(handler)

        return unsubscribe

    def publish(self, event: MonitorEvent) -> None:
        for event_type, handlers in list(self._handlers.items()):
            if not isinstance(event, event_type):
                continue
            for handler in list(handlers):
                try:
                    handler(event)
                except Exception as e:
                    logger.error("Event handler %r failed on %s: %s", handler, event.name, e)
