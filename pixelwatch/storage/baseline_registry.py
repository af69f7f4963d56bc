"""Baseline registry: in-memory map of current baselines backed by the snapshot store."""

from __future__ import annotations

import logging

from pixelwatch.models.config import ViewportConfig
from pixelwatch.models.snapshot import Snapshot
from pixelwatch.storage.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class BaselineRegistry:
    """Holds at most one baseline snapshot per snapshot key."""

    def __init__(self, store: SnapshotStore, viewports: list[ViewportConfig] | None = None):
        self.store = store
        self.viewports = viewports or []
        self._baselines: dict[str, Snapshot] = {}

    def __len__(self) -> int:
        return len(self._baselines)

    def __contains__(self, key: str) -> bool:
        return key in self._baselines

    def keys(self) -> list[str]:
        return sorted(self._baselines)

    def items(self) -> list[tuple[str, Snapshot]]:
        return sorted(self._baselines.items())

    def get(self, key: str) -> Snapshot | None:
        return self._baselines.get(key)

    def set(self, key: str, snapshot: Snapshot) -> None:
        """Overwrite the baseline for ``key``.

        The snapshot is persisted first; the in-memory entry changes only if
        the write succeeded. StorageError propagates to the caller.
        """
        self.store.write_baseline(key, snapshot)
        self._baselines[key] = snapshot
        logger.info("Stored baseline for %s", snapshot.target.label())

    def _resolve_viewport(self, stored: ViewportConfig) -> ViewportConfig:
        for vp in self.viewports:
            if vp.name == stored.name:
                return vp
        # Unknown viewport name: keep the name, fall back to default dimensions
        logger.warning("Baseline viewport '%s' is not configured; using default dimensions", stored.name)
        return ViewportConfig(name=stored.name)

    def load_all(self) -> int:
        """Repopulate the map from persisted baselines; returns the count loaded."""
        self._baselines.clear()
        try:
            for record, image in self.store.iter_baselines():
                snapshot = Snapshot(
                    url=record.url,
                    viewport=self._resolve_viewport(record.viewport),
                    selector=record.selector,
                    image=image,
                    captured_at=record.captured_at,
                    metadata=record.metadata,
                )
                if snapshot.key != record.key:
                    logger.warning(
                        "Baseline key %s does not match its stored target (%s); skipping",
                        record.key, snapshot.key,
                    )
                    continue
                self._baselines[record.key] = snapshot
        except OSError as e:
            logger.error("Error loading baselines: %s", e)
        logger.info("Loaded %d baseline snapshots", len(self._baselines))
        return len(self._baselines)
