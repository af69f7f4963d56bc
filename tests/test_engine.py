"""Tests for the monitor engine: lifecycle, baseline operations and events."""

import asyncio
from unittest.mock import patch

import pytest

from conftest import FakeRenderer, RecordingChannel, make_png
from pixelwatch.errors import CaptureError, CaptureErrorKind, MonitorError, ScheduleError, StorageError
from pixelwatch.events import (
    BaselinesCreated,
    BaselineUpdated,
    CheckCompleted,
    EngineError,
    MonitorEvent,
    Started,
    Stopped,
)
from pixelwatch.models.config import MonitorConfig, ViewportConfig
from pixelwatch.models.snapshot import CheckStatus
from pixelwatch.monitor.engine import VisualMonitor


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def monitor(monitor_config, renderer, channel) -> VisualMonitor:
    return VisualMonitor(monitor_config, renderer=renderer, channels=[channel])


def record_events(monitor: VisualMonitor) -> list[MonitorEvent]:
    events: list[MonitorEvent] = []
    monitor.events.subscribe(MonitorEvent, events.append)
    return events


@pytest.mark.asyncio
class TestLifecycle:

    async def test_start_creates_baselines_when_none(self, monitor):
        events = record_events(monitor)
        result = await monitor.start()
        try:
            assert result["status"] == "started"
            assert monitor.is_running is True
            assert len(monitor.registry) == 1
            names = [e.name for e in events]
            assert names == ["baselines-created", "started"]
        finally:
            monitor.stop()
            await monitor.ticker.wait_idle()

    async def test_start_loads_existing_baselines(self, monitor_config, renderer, channel):
        first = VisualMonitor(monitor_config, renderer=renderer, channels=[channel])
        await first.create_baselines()

        second = VisualMonitor(monitor_config, renderer=FakeRenderer(), channels=[channel])
        events = record_events(second)
        await second.start()
        try:
            assert len(second.registry) == 1
            assert second.renderer.calls == []
            assert not any(isinstance(e, BaselinesCreated) for e in events)
        finally:
            second.stop()
            await second.ticker.wait_idle()

    async def test_start_is_idempotent(self, monitor):
        await monitor.start()
        try:
            ticker = monitor.ticker
            result = await monitor.start()
            assert result["status"] == "already-running"
            assert monitor.ticker is ticker
        finally:
            monitor.stop()
            await monitor.ticker.wait_idle()

    async def test_invalid_schedule_fails_fast(self, monitor_config, renderer):
        monitor_config.schedule = "every six hours"
        monitor = VisualMonitor(monitor_config, renderer=renderer, channels=[])
        with pytest.raises(ScheduleError):
            await monitor.start()
        assert monitor.is_running is False
        assert renderer.calls == []

    async def test_stop_transitions_to_idle(self, monitor):
        events = record_events(monitor)
        await monitor.start()
        result = monitor.stop()
        await monitor.ticker.wait_idle()
        assert result["status"] == "stopped"
        assert monitor.is_running is False
        assert isinstance(events[-1], Stopped)

    async def test_stop_when_idle_is_noop(self, monitor):
        events = record_events(monitor)
        assert monitor.stop() is None
        assert events == []


@pytest.mark.asyncio
class TestRunCheck:

    async def test_emits_check_completed(self, monitor):
        events = record_events(monitor)
        results = await monitor.run_check()
        completed = [e for e in events if isinstance(e, CheckCompleted)]
        assert len(completed) == 1
        assert completed[0].results == results

    async def test_regression_flows_to_channel(self, monitor, renderer, channel):
        await monitor.create_baselines()
        renderer.default = make_png(changed=20)
        results = await monitor.run_check()
        assert results[0].status == CheckStatus.ALERT
        assert len(channel.events) == 1

    async def test_overlapping_ticks_yield_one_check(self, monitor, renderer):
        """A tick arriving while a check runs is dropped."""
        await monitor.start()
        events = record_events(monitor)
        renderer.gate = asyncio.Event()
        try:
            first = monitor.ticker.fire()
            await asyncio.sleep(0.01)
            assert monitor.ticker.fire() is None

            renderer.gate.set()
            await first
            completed = [e for e in events if isinstance(e, CheckCompleted)]
            assert len(completed) == 1
        finally:
            monitor.stop()
            await monitor.ticker.wait_idle()

    async def test_tick_error_is_published(self, monitor_config, renderer):
        monitor_config.bootstrap_missing_baselines = False
        monitor = VisualMonitor(monitor_config, renderer=renderer, channels=[])
        await monitor.start()
        events = record_events(monitor)
        try:
            # Baselines were bootstrapped by start(); empty the registry to force a failure
            monitor.registry._baselines.clear()
            await monitor.ticker.fire()
            errors = [e for e in events if isinstance(e, EngineError)]
            assert len(errors) == 1
            assert "NoBaselinesError" in errors[0].cause
            assert monitor.ticker.is_running
        finally:
            monitor.stop()
            await monitor.ticker.wait_idle()


@pytest.mark.asyncio
class TestCreateBaselines:

    async def test_counts_created_and_failed(self, monitor_config, renderer, channel):
        monitor_config.selectors = ["body", ".gone"]
        renderer.set("https://example.com", "desktop", ".gone",
                     CaptureError(CaptureErrorKind.ELEMENT_NOT_FOUND, ".gone"))
        monitor = VisualMonitor(monitor_config, renderer=renderer, channels=[channel])
        events = record_events(monitor)

        result = await monitor.create_baselines()

        assert result["count"] == 1
        assert result["failed"] == 1
        assert isinstance(events[-1], BaselinesCreated)
        assert events[-1].count == 1

    async def test_write_failure_propagates(self, monitor):
        with patch.object(monitor.store, "write_baseline", side_effect=StorageError("disk full")):
            with pytest.raises(StorageError):
                await monitor.create_baselines()
        assert len(monitor.registry) == 0

    async def test_hash_routed_pages_keep_separate_baselines(self, monitor_config, renderer, channel):
        settings = "https://app.example.com/#/settings"
        billing = "https://app.example.com/#/billing"
        monitor_config.urls = [settings, billing]
        renderer.set(billing, "desktop", "body", make_png(changed=50))
        monitor = VisualMonitor(monitor_config, renderer=renderer, channels=[channel])

        await monitor.create_baselines()
        assert len(monitor.registry) == 2

        results = await monitor.run_check()
        assert [r.status for r in results] == [CheckStatus.OK, CheckStatus.OK]
        assert channel.events == []


@pytest.mark.asyncio
class TestAcceptAsBaseline:

    async def test_overwrites_without_comparing(self, monitor, renderer, channel):
        await monitor.create_baselines()
        changed = make_png(changed=40)
        renderer.default = changed
        events = record_events(monitor)

        result = await monitor.accept_as_baseline()

        assert result["status"] == "baseline-updated"
        assert monitor.registry.get(monitor.targets[0].key).image == changed
        assert channel.events == []
        assert monitor.store.history(monitor.targets[0].key) == []
        assert isinstance(events[-1], BaselineUpdated)

        results = await monitor.run_check()
        assert results[0].status == CheckStatus.OK

    async def test_twice_with_same_capture_is_stable(self, monitor, renderer):
        renderer.default = make_png(changed=3)
        await monitor.accept_as_baseline()
        first = list(monitor.store.iter_baselines())
        await monitor.accept_as_baseline()
        second = list(monitor.store.iter_baselines())
        assert [img for _, img in first] == [img for _, img in second]
        assert first[0][0].image_hash == second[0][0].image_hash

    async def test_filters_by_viewport_and_selector(self, monitor_config, renderer):
        monitor_config.viewports = [
            ViewportConfig(width=1280, height=720, name="desktop"),
            ViewportConfig(width=375, height=812, name="mobile"),
        ]
        monitor_config.selectors = ["body", ".header"]
        monitor = VisualMonitor(monitor_config, renderer=renderer, channels=[])

        result = await monitor.accept_as_baseline(viewport_name="mobile", selector=".header")

        assert result["count"] == 1
        assert renderer.calls == [("https://example.com", "mobile", ".header")]

    async def test_url_outside_config_is_accepted(self, monitor, renderer):
        await monitor.accept_as_baseline(url="https://example.com/pricing")
        assert renderer.calls == [("https://example.com/pricing", "desktop", "body")]

    async def test_unknown_viewport_rejected(self, monitor):
        with pytest.raises(ValueError):
            await monitor.accept_as_baseline(viewport_name="watch")

    async def test_capture_failure_raises(self, monitor, renderer):
        renderer.set("https://example.com", "desktop", "body",
                     CaptureError(CaptureErrorKind.TRANSPORT_ERROR, "connection reset"))
        with pytest.raises(MonitorError):
            await monitor.accept_as_baseline()

    async def test_write_failure_propagates(self, monitor):
        with patch.object(monitor.store, "write_baseline", side_effect=StorageError("read-only")):
            with pytest.raises(StorageError):
                await monitor.accept_as_baseline()


class TestConstruction:

    def test_targets_from_config(self, monitor_config, renderer):
        monitor_config.urls = ["https://a.test", "https://b.test"]
        monitor_config.selectors = ["body", ".nav"]
        monitor = VisualMonitor(monitor_config, renderer=renderer)
        assert len(monitor.targets) == 4
        assert monitor.is_running is False

    def test_channels_built_from_config(self, monitor_config, renderer):
        data = monitor_config.model_dump()
        data["channels"] = [{"type": "slack", "url": "https://hooks.slack.test/x"}]
        monitor_config = MonitorConfig.model_validate(data)
        monitor = VisualMonitor(monitor_config, renderer=renderer)
        assert [c.kind for c in monitor.channels] == ["slack"]

    def test_events_started_payload(self):
        event = Started(schedule="0 * * * *", targets=3)
        assert event.name == "started"
        assert event.timestamp
