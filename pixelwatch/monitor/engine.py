"""Monitor engine: owns the baseline registry, the scheduler and the check pipeline."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from pixelwatch.alerts.channels import Channel
from pixelwatch.alerts.dispatcher import AlertDispatcher
from pixelwatch.capture.renderer import PlaywrightRenderer, Renderer
from pixelwatch.compare.comparator import Comparator, PixelComparator
from pixelwatch.errors import MonitorError
from pixelwatch.events import (
    BaselinesCreated,
    BaselineUpdated,
    CheckCompleted,
    EngineError,
    EventBus,
    Started,
    Stopped,
)
from pixelwatch.models.config import MonitorConfig
from pixelwatch.models.snapshot import CheckResult, Target, build_targets, utc_now
from pixelwatch.monitor.pipeline import ComparisonPipeline
from pixelwatch.monitor.scheduler import CronTicker, parse_schedule
from pixelwatch.storage.baseline_registry import BaselineRegistry
from pixelwatch.storage.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class VisualMonitor:
    """Process-wide monitor state: targets, baselines, running flag and schedule.

    Collaborators (renderer, comparator, store, channels) default to the
    production implementations and can be injected.
    """

    def __init__(
        self,
        config: MonitorConfig,
        renderer: Optional[Renderer] = None,
        comparator: Optional[Comparator] = None,
        store: Optional[SnapshotStore] = None,
        channels: Optional[list[Channel]] = None,
        events: Optional[EventBus] = None,
    ):
        self.config = config
        self.targets: list[Target] = build_targets(config.urls, config.viewports, config.selectors)
        self.store = store or SnapshotStore(
            Path(config.storage.base_dir), max_snapshots=config.storage.max_snapshots
        )
        self.registry = BaselineRegistry(self.store, config.viewports)
        self.events = events or EventBus()
        self.renderer = renderer or PlaywrightRenderer(config.browser, config.settle_delay_ms)
        self.channels = config.build_channels() if channels is None else channels
        self.pipeline = ComparisonPipeline(
            config=config,
            renderer=self.renderer,
            registry=self.registry,
            store=self.store,
            comparator=comparator or PixelComparator(config.color_threshold),
            dispatcher=AlertDispatcher(),
            channels=self.channels,
            events=self.events,
        )
        self.is_running = False
        self.ticker: Optional[CronTicker] = None
        self._check_lock = asyncio.Lock()

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> dict[str, Any]:
        """Load baselines (creating them if none exist) and arm the schedule."""
        if self.is_running:
            return {"status": "already-running", "timestamp": utc_now()}

        # Fail fast on a bad schedule before touching storage or the browser
        parse_schedule(self.config.schedule)

        self.store.base_dir.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(self.registry.load_all)
        if len(self.registry) == 0:
            await self.create_baselines()

        self.ticker = CronTicker(
            self.config.schedule, self._scheduled_check, on_error=self._report_error
        )
        self.ticker.start()
        self.is_running = True

        event = Started(schedule=self.config.schedule, targets=len(self.targets))
        self.events.publish(event)
        logger.info("Monitoring %d target(s) on schedule '%s'", len(self.targets), self.config.schedule)
        return {"status": "started", "timestamp": event.timestamp,
                "schedule": self.config.schedule, "targets": len(self.targets)}

    def stop(self) -> Optional[dict[str, Any]]:
        """Cancel future checks. Returns None when already idle."""
        if not self.is_running:
            return None
        if self.ticker is not None:
            self.ticker.stop()
        self.is_running = False
        event = Stopped()
        self.events.publish(event)
        return {"status": "stopped", "timestamp": event.timestamp}

    # -- operations --------------------------------------------------------

    async def create_baselines(self) -> dict[str, Any]:
        """Capture every target and store the captures as baselines.

        Capture failures are counted; a baseline write failure raises.
        """
        async with self._check_lock:
            outcomes = await self.pipeline.capture(self.targets)
            created = 0
            for outcome in outcomes:
                if outcome.snapshot is None:
                    continue
                await asyncio.to_thread(self.registry.set, outcome.snapshot.key, outcome.snapshot)
                created += 1

        failed = len(outcomes) - created
        event = BaselinesCreated(count=created, failed=failed)
        self.events.publish(event)
        logger.info("Created %d baseline(s) (%d capture failure(s))", created, failed)
        return {"status": "baselines-created", "timestamp": event.timestamp,
                "count": created, "failed": failed}

    async def run_check(self, targets: Optional[list[Target]] = None) -> list[CheckResult]:
        """Run one check now. Concurrent callers are serialized."""
        async with self._check_lock:
            results = await self.pipeline.run_check(targets if targets is not None else self.targets)
        self.events.publish(CheckCompleted(results=results))
        return results

    async def accept_as_baseline(
        self,
        url: Optional[str] = None,
        viewport_name: Optional[str] = None,
        selector: Optional[str] = None,
    ) -> dict[str, Any]:
        """Capture fresh snapshots for the filter and overwrite their baselines.

        Any argument left as None matches every configured value.
        """
        if viewport_name is not None:
            viewport = self.config.find_viewport(viewport_name)
            if viewport is None:
                raise ValueError(f"Unknown viewport: {viewport_name}")
            viewports = [viewport]
        else:
            viewports = self.config.viewports
        urls = [url] if url else self.config.urls
        selectors = [selector] if selector else self.config.selectors
        targets = build_targets(urls, viewports, selectors)
        if not targets:
            raise ValueError("No targets match the given filter")

        async with self._check_lock:
            outcomes = await self.pipeline.capture(targets)
            snapshots = [o.snapshot for o in outcomes if o.snapshot is not None]
            if not snapshots:
                errors = "; ".join(o.error or "" for o in outcomes)
                raise MonitorError(f"Failed to capture snapshot for new baseline: {errors}")
            for snapshot in snapshots:
                await asyncio.to_thread(self.registry.set, snapshot.key, snapshot)

        event = BaselineUpdated(url=url, viewport=viewport_name, selector=selector, count=len(snapshots))
        self.events.publish(event)
        return {"status": "baseline-updated", "timestamp": event.timestamp,
                "url": url, "viewport": viewport_name, "selector": selector,
                "count": len(snapshots)}

    # -- scheduling --------------------------------------------------------

    async def _scheduled_check(self) -> None:
        await self.run_check()

    def _report_error(self, error: Exception) -> None:
        self.events.publish(EngineError(cause=f"{type(error).__name__}: {error}"))
