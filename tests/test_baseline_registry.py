"""Tests for the in-memory baseline registry."""

from unittest.mock import patch

import pytest

from conftest import make_png
from pixelwatch.errors import StorageError
from pixelwatch.models.config import ViewportConfig
from pixelwatch.models.snapshot import Snapshot
from pixelwatch.storage.baseline_registry import BaselineRegistry
from pixelwatch.storage.snapshot_store import SnapshotStore


class TestGetSet:

    def test_get_absent(self, store: SnapshotStore):
        registry = BaselineRegistry(store)
        assert registry.get("missing") is None
        assert len(registry) == 0

    def test_set_then_get(self, store: SnapshotStore, snapshot: Snapshot):
        registry = BaselineRegistry(store)
        registry.set(snapshot.key, snapshot)
        assert registry.get(snapshot.key) is snapshot
        assert snapshot.key in registry

    def test_set_persists(self, store: SnapshotStore, snapshot: Snapshot):
        BaselineRegistry(store).set(snapshot.key, snapshot)
        assert len(list(store.iter_baselines())) == 1

    def test_set_overwrites(self, store: SnapshotStore, snapshot: Snapshot):
        registry = BaselineRegistry(store)
        registry.set(snapshot.key, snapshot)
        newer = snapshot.model_copy(update={"image": make_png(changed=10)})
        registry.set(snapshot.key, newer)
        assert registry.get(snapshot.key).image == newer.image
        assert len(registry) == 1

    def test_failed_write_leaves_memory_unchanged(self, store: SnapshotStore, snapshot: Snapshot):
        registry = BaselineRegistry(store)
        with patch.object(store, "write_baseline", side_effect=StorageError("read-only")):
            with pytest.raises(StorageError):
                registry.set(snapshot.key, snapshot)
        assert registry.get(snapshot.key) is None


class TestLoadAll:

    def test_reload_restores_baselines(self, store: SnapshotStore, snapshot: Snapshot, viewport):
        BaselineRegistry(store, [viewport]).set(snapshot.key, snapshot)

        fresh = BaselineRegistry(store, [viewport])
        assert fresh.load_all() == 1
        loaded = fresh.get(snapshot.key)
        assert loaded.image == snapshot.image
        assert loaded.url == snapshot.url
        assert loaded.selector == snapshot.selector
        assert loaded.viewport == viewport

    def test_key_identical_between_write_and_read(self, store: SnapshotStore, viewport):
        # URLs containing separators and query strings must reload under the same key
        snap = Snapshot(
            url="https://example.com/a__b?x=1&y=__z",
            viewport=viewport,
            selector="div__main > .hero",
            image=make_png(),
        )
        BaselineRegistry(store, [viewport]).set(snap.key, snap)
        fresh = BaselineRegistry(store, [viewport])
        fresh.load_all()
        assert fresh.keys() == [snap.key]

    def test_unknown_viewport_uses_fallback(self, store: SnapshotStore):
        legacy = ViewportConfig(width=1024, height=600, name="legacy")
        snap = Snapshot(url="https://example.com", viewport=legacy, selector="body", image=make_png())
        BaselineRegistry(store, [legacy]).set(snap.key, snap)

        fresh = BaselineRegistry(store, [ViewportConfig(name="desktop")])
        assert fresh.load_all() == 1
        vp = fresh.get(snap.key).viewport
        assert vp.name == "legacy"
        assert (vp.width, vp.height) == (1920, 1080)

    def test_configured_viewport_dimensions_win(self, store: SnapshotStore, snapshot: Snapshot):
        BaselineRegistry(store).set(snapshot.key, snapshot)
        resized = ViewportConfig(width=1440, height=900, name="desktop")
        fresh = BaselineRegistry(store, [resized])
        fresh.load_all()
        assert fresh.get(snapshot.key).viewport.width == 1440

    def test_unreadable_entry_means_no_baseline(self, store: SnapshotStore, snapshot: Snapshot):
        BaselineRegistry(store).set(snapshot.key, snapshot)
        (store.base_dir / "baselines" / snapshot.key / "meta.json").write_text("garbage")
        fresh = BaselineRegistry(store)
        assert fresh.load_all() == 0
        assert fresh.get(snapshot.key) is None

    def test_load_empty_store(self, store: SnapshotStore):
        assert BaselineRegistry(store).load_all() == 0
