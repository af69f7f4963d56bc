"""Pytest configuration and shared fixtures."""

import asyncio
import io
from pathlib import Path
from typing import Optional

import pytest
from PIL import Image

from pixelwatch.alerts.channels import Channel
from pixelwatch.capture.renderer import Renderer
from pixelwatch.errors import ChannelError
from pixelwatch.models.config import MonitorConfig, StorageConfig, ViewportConfig
from pixelwatch.models.snapshot import AlertEvent, Snapshot
from pixelwatch.storage.snapshot_store import SnapshotStore


# ============================================================================
# Image helpers
# ============================================================================


def make_png(width: int = 10, height: int = 10, changed: int = 0) -> bytes:
    """White image with the first ``changed`` pixels (row-major) painted black."""
    img = Image.new("RGBA", (width, height), (255, 255, 255, 255))
    px = img.load()
    for i in range(changed):
        px[i % width, i // width] = (0, 0, 0, 255)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


# ============================================================================
# Test doubles
# ============================================================================


class FakeRenderer(Renderer):
    """Serves pre-set images (or raises pre-set errors) per (url, viewport, selector)."""

    def __init__(self, default: Optional[bytes] = None):
        self.default = default if default is not None else make_png()
        self.responses: dict[tuple[str, str, str], object] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.gate: Optional[asyncio.Event] = None
        self.sessions = 0

    def set(self, url: str, viewport: str, selector: str, response: object) -> None:
        self.responses[(url, viewport, selector)] = response

    async def __aenter__(self):
        self.sessions += 1
        return self

    async def capture(self, url, viewport, selector, timeout_ms):
        self.calls.append((url, viewport.name, selector))
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.get((url, viewport.name, selector), self.default)
        if isinstance(response, Exception):
            raise response
        return Snapshot(url=url, viewport=viewport, selector=selector, image=response)


class RecordingChannel(Channel):
    kind = "recording"

    def __init__(self):
        self.events: list[AlertEvent] = []

    async def send(self, event: AlertEvent) -> None:
        self.events.append(event)


class FailingChannel(Channel):
    kind = "failing"

    def __init__(self):
        self.attempts = 0

    async def send(self, event: AlertEvent) -> None:
        self.attempts += 1
        raise ChannelError("endpoint unreachable")


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def viewport() -> ViewportConfig:
    return ViewportConfig(width=1280, height=720, name="desktop")


@pytest.fixture
def monitor_config(tmp_path: Path, viewport: ViewportConfig) -> MonitorConfig:
    """Single-target configuration storing under tmp_path."""
    return MonitorConfig(
        schedule="*/5 * * * *",
        urls=["https://example.com"],
        viewports=[viewport],
        selectors=["body"],
        pixel_difference_threshold=0.03,
        storage=StorageConfig(base_dir=str(tmp_path / "snapshots"), max_snapshots=20),
    )


@pytest.fixture
def store(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "snapshots", max_snapshots=20)


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def snapshot(viewport: ViewportConfig) -> Snapshot:
    return Snapshot(
        url="https://example.com",
        viewport=viewport,
        selector="body",
        image=make_png(),
        metadata={"title": "Example Domain"},
    )
