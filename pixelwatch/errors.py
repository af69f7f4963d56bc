"""Exception hierarchy for the monitoring engine."""

from __future__ import annotations

from enum import Enum


class MonitorError(Exception):
    """Base class for all engine errors."""


class CaptureErrorKind(str, Enum):
    NAVIGATION_TIMEOUT = "navigation-timeout"
    ELEMENT_NOT_FOUND = "element-not-found"
    TRANSPORT_ERROR = "transport-error"


class CaptureError(MonitorError):
    def __init__(self, kind: CaptureErrorKind, message: str):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind


class DimensionMismatchError(MonitorError):
    def __init__(self, baseline_size: tuple[int, int], current_size: tuple[int, int]):
        super().__init__(
            f"Image dimensions differ: baseline {baseline_size[0]}x{baseline_size[1]}, "
            f"current {current_size[0]}x{current_size[1]}"
        )
        self.baseline_size = baseline_size
        self.current_size = current_size


class ChannelError(MonitorError):
    """A notification channel failed to deliver an alert."""


class ScheduleError(MonitorError):
    """The configured schedule expression is invalid."""


class StorageError(MonitorError):
    """A snapshot or baseline could not be read from or written to storage."""


class NoBaselinesError(MonitorError):
    """A strict-mode check was requested with an empty baseline registry."""
