"""Comparison pipeline: capture, compare, record and alert for a batch of targets."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from pixelwatch.alerts.channels import Channel
from pixelwatch.alerts.dispatcher import AlertDispatcher
from pixelwatch.capture.renderer import Renderer
from pixelwatch.compare.comparator import Comparator
from pixelwatch.errors import CaptureError, DimensionMismatchError, NoBaselinesError
from pixelwatch.events import EventBus, VisualRegressionDetected
from pixelwatch.models.config import MonitorConfig
from pixelwatch.models.snapshot import (
    AlertEvent,
    CheckResult,
    CheckStatus,
    ComparisonResult,
    Snapshot,
    Target,
)
from pixelwatch.storage.baseline_registry import BaselineRegistry
from pixelwatch.storage.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class CaptureOutcome:
    target: Target
    snapshot: Optional[Snapshot] = None
    error: Optional[str] = None


class ComparisonPipeline:
    """Runs one check across a set of targets.

    Captures run concurrently up to ``config.max_concurrency``; a failure on
    one target is recorded in its result and never aborts the batch.
    """

    def __init__(
        self,
        config: MonitorConfig,
        renderer: Renderer,
        registry: BaselineRegistry,
        store: SnapshotStore,
        comparator: Comparator,
        dispatcher: AlertDispatcher,
        channels: list[Channel],
        events: EventBus,
    ):
        self.config = config
        self.renderer = renderer
        self.registry = registry
        self.store = store
        self.comparator = comparator
        self.dispatcher = dispatcher
        self.channels = channels
        self.events = events

    async def _capture_one(self, target: Target) -> Snapshot:
        return await self.renderer.capture(
            target.url, target.viewport, target.selector, self.config.capture_timeout_ms
        )

    async def capture(self, targets: list[Target]) -> list[CaptureOutcome]:
        """Capture every target; failures are returned, not raised."""
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def _one(target: Target) -> CaptureOutcome:
            async with semaphore:
                try:
                    return CaptureOutcome(target, snapshot=await self._capture_one(target))
                except Exception as e:
                    logger.warning("Capture failed for %s: %s", target.label(), e)
                    return CaptureOutcome(target, error=str(e))

        async with self.renderer:
            return list(await asyncio.gather(*(_one(t) for t in targets)))

    async def run_check(self, targets: list[Target]) -> list[CheckResult]:
        """Check every target against its baseline; results follow ``targets`` order."""
        if len(self.registry) == 0 and not self.config.bootstrap_missing_baselines:
            raise NoBaselinesError(
                "No baseline snapshots available. Create baselines first "
                "or enable bootstrap_missing_baselines."
            )

        start = time.time()
        logger.info("Starting check of %d target(s)", len(targets))
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def _one(target: Target) -> CheckResult:
            async with semaphore:
                return await self._check_target(target)

        async with self.renderer:
            results = list(await asyncio.gather(*(_one(t) for t in targets)))

        counts = {s: sum(1 for r in results if r.status == s) for s in CheckStatus}
        logger.info(
            "Check complete in %.1fs: %d ok, %d alert, %d new baseline, %d failed",
            time.time() - start,
            counts[CheckStatus.OK], counts[CheckStatus.ALERT],
            counts[CheckStatus.NEW_BASELINE], counts[CheckStatus.FAILED],
        )
        return results

    async def _check_target(self, target: Target) -> CheckResult:
        try:
            snapshot = await self._capture_one(target)
        except CaptureError as e:
            logger.warning("Capture failed for %s: %s", target.label(), e)
            return CheckResult(target=target, status=CheckStatus.FAILED, error=str(e))
        except Exception as e:
            logger.error("Unexpected capture error for %s: %s", target.label(), e)
            return CheckResult(target=target, status=CheckStatus.FAILED, error=str(e))

        key = snapshot.key
        baseline = self.registry.get(key)

        if baseline is None:
            try:
                await asyncio.to_thread(self.registry.set, key, snapshot)
            except Exception as e:
                logger.error("Could not store new baseline for %s: %s", target.label(), e)
                return CheckResult(target=target, status=CheckStatus.FAILED, error=str(e))
            return CheckResult(target=target, status=CheckStatus.NEW_BASELINE)

        try:
            output = await asyncio.to_thread(self.comparator.diff, baseline.image, snapshot.image)
        except DimensionMismatchError as e:
            logger.warning("Cannot compare %s: %s", target.label(), e)
            return CheckResult(target=target, status=CheckStatus.FAILED, error=str(e))
        except Exception as e:
            logger.error("Comparison error for %s: %s", target.label(), e)
            return CheckResult(target=target, status=CheckStatus.FAILED, error=str(e))

        exceeds = output.diff_ratio > self.config.pixel_difference_threshold
        diff_ref = None
        if exceeds and output.diff_image is not None:
            try:
                diff_ref = await asyncio.to_thread(self.store.write_diff, key, output.diff_image)
            except OSError as e:
                logger.error("Could not write diff image for %s: %s", target.label(), e)

        comparison = ComparisonResult(
            diff_ratio=output.diff_ratio,
            diff_pixel_count=output.diff_pixel_count,
            total_pixels=output.total_pixels,
            exceeds_threshold=exceeds,
            diff_image_ref=diff_ref,
        )

        try:
            await asyncio.to_thread(self.store.append_history, key, snapshot, comparison)
        except OSError as e:
            logger.error("Could not record history for %s: %s", target.label(), e)

        if not exceeds:
            logger.debug("%s: %.2f%% difference", target.label(), output.diff_ratio * 100)
            return CheckResult(target=target, status=CheckStatus.OK, diff_ratio=output.diff_ratio)

        logger.warning(
            "Visual regression on %s: %.2f%% difference (threshold %.2f%%)",
            target.label(), output.diff_ratio * 100,
            self.config.pixel_difference_threshold * 100,
        )
        self.events.publish(VisualRegressionDetected(
            target=target, diff_ratio=output.diff_ratio, diff_image_ref=diff_ref,
        ))
        await self.dispatcher.dispatch(AlertEvent.from_result(target, comparison), self.channels)
        return CheckResult(
            target=target, status=CheckStatus.ALERT,
            diff_ratio=output.diff_ratio, diff_image_ref=diff_ref,
        )
