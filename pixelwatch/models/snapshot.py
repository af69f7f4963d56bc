"""Snapshot, comparison and check result data structures."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from pixelwatch.keys import snapshot_key
from pixelwatch.models.config import ViewportConfig


def utc_now() -> str:
    """ISO-8601 UTC timestamp with microseconds."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class Target(BaseModel):
    """A monitored (url, viewport, selector) triple."""
    model_config = ConfigDict(frozen=True)

    url: str
    viewport: ViewportConfig
    selector: str = "body"

    @property
    def key(self) -> str:
        return snapshot_key(self.url, self.viewport.name, self.selector)

    def label(self) -> str:
        return f"{self.url} [{self.viewport.name}] {self.selector}"


class Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    viewport: ViewportConfig
    selector: str
    image: bytes = Field(repr=False)  # PNG bytes
    captured_at: str = Field(default_factory=utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return snapshot_key(self.url, self.viewport.name, self.selector)

    @property
    def target(self) -> Target:
        return Target(url=self.url, viewport=self.viewport, selector=self.selector)


class ComparisonResult(BaseModel):
    diff_ratio: float
    diff_pixel_count: int = 0
    total_pixels: int = 0
    exceeds_threshold: bool = False
    diff_image_ref: Optional[str] = None  # only set when exceeds_threshold


class SnapshotRecord(BaseModel):
    """Sidecar metadata stored next to every persisted image."""
    key: str
    url: str
    viewport: ViewportConfig
    selector: str
    captured_at: str
    image_file: str
    image_hash: str  # SHA-256 hex digest
    metadata: dict[str, Any] = Field(default_factory=dict)
    comparison: Optional[ComparisonResult] = None


class HistoryEntry(BaseModel):
    key: str
    sequence: int
    record: SnapshotRecord
    comparison: ComparisonResult
    timestamp: str


class CheckStatus(str, Enum):
    NEW_BASELINE = "new-baseline"
    OK = "ok"
    ALERT = "alert"
    FAILED = "failed"


class CheckResult(BaseModel):
    target: Target
    status: CheckStatus
    diff_ratio: Optional[float] = None
    diff_image_ref: Optional[str] = None
    error: Optional[str] = None
    timestamp: str = Field(default_factory=utc_now)


class AlertEvent(BaseModel):
    """The logical payload every notification channel receives."""
    url: str
    viewport: str
    selector: str
    diff_ratio: float
    diff_image_ref: Optional[str] = None
    detected_at: str = Field(default_factory=utc_now)

    @classmethod
    def from_result(cls, target: Target, comparison: ComparisonResult) -> "AlertEvent":
        return cls(
            url=target.url,
            viewport=target.viewport.name,
            selector=target.selector,
            diff_ratio=comparison.diff_ratio,
            diff_image_ref=comparison.diff_image_ref,
        )


def build_targets(
    urls: list[str], viewports: list[ViewportConfig], selectors: list[str]
) -> list[Target]:
    """Cross product of urls x viewports x selectors, in declaration order."""
    return [
        Target(url=url, viewport=vp, selector=sel)
        for url in urls
        for vp in viewports
        for sel in selectors
    ]
