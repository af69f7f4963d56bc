"""Snapshot store: durable storage for baselines, history and diff images.

Layout under ``base_dir``::

    baselines/<key>/<hash>.png     current baseline image
    baselines/<key>/meta.json      sidecar record (commit marker)
    history/<key>/<seq>.png        retained history images
    history/<key>/<seq>.json       sidecar record per history entry
    diffs/<key>-<timestamp>.png    diff images for alerting checks only

Every artifact is described by its JSON sidecar; file names are never parsed
to recover the url, viewport or selector.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
from pathlib import Path
from typing import Iterator

from pixelwatch.errors import StorageError
from pixelwatch.models.snapshot import (
    ComparisonResult,
    HistoryEntry,
    Snapshot,
    SnapshotRecord,
    utc_now,
)

logger = logging.getLogger(__name__)

BASELINES_DIR = "baselines"
HISTORY_DIR = "history"
DIFFS_DIR = "diffs"
META_FILE = "meta.json"


class SnapshotStore:
    """Blob storage with directory semantics plus the monitor's persisted layout."""

    def __init__(self, base_dir: Path, max_snapshots: int = 20):
        self.base_dir = Path(base_dir)
        self.max_snapshots = max_snapshots
        self._lock = threading.Lock()

    # -- blob primitives ---------------------------------------------------

    def _abs(self, path: str) -> Path:
        return self.base_dir / path

    def write(self, path: str, data: bytes) -> None:
        """Write bytes atomically: a reader sees the old file or the new one."""
        dest = self._abs(path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(f".{dest.name}.tmp")
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, dest)

    def read(self, path: str) -> bytes:
        return self._abs(path).read_bytes()

    def list(self, directory: str) -> list[str]:
        """Sorted entry names in ``directory``; empty when it does not exist."""
        d = self._abs(directory)
        if not d.is_dir():
            return []
        return sorted(p.name for p in d.iterdir() if not p.name.startswith("."))

    def delete(self, path: str) -> None:
        p = self._abs(path)
        if p.exists():
            p.unlink()

    def _write_json(self, path: str, record: SnapshotRecord) -> None:
        self.write(path, json.dumps(record.model_dump(), indent=2).encode("utf-8"))

    def _read_record(self, path: str) -> SnapshotRecord:
        return SnapshotRecord(**json.loads(self.read(path)))

    # -- baselines ---------------------------------------------------------

    def write_baseline(self, key: str, snapshot: Snapshot) -> SnapshotRecord:
        """Persist a baseline image and its sidecar.

        The image is stored under its content hash and the sidecar is written
        last, so a failure at any point leaves the previous baseline intact.
        Raises StorageError on any I/O failure.
        """
        image_hash = hashlib.sha256(snapshot.image).hexdigest()
        image_file = f"{image_hash[:16]}.png"
        record = SnapshotRecord(
            key=key,
            url=snapshot.url,
            viewport=snapshot.viewport,
            selector=snapshot.selector,
            captured_at=snapshot.captured_at,
            image_file=image_file,
            image_hash=image_hash,
            metadata=snapshot.metadata,
        )
        key_dir = f"{BASELINES_DIR}/{key}"
        with self._lock:
            try:
                self.write(f"{key_dir}/{image_file}", snapshot.image)
                self._write_json(f"{key_dir}/{META_FILE}", record)
            except OSError as e:
                raise StorageError(f"Failed to write baseline {key}: {e}") from e

            # Drop images no longer referenced by the sidecar
            for name in self.list(key_dir):
                if name.endswith(".png") and name != image_file:
                    try:
                        self.delete(f"{key_dir}/{name}")
                    except OSError as e:
                        logger.warning("Could not remove stale baseline image %s/%s: %s", key, name, e)

        logger.debug("Wrote baseline %s (%s)", key, image_file)
        return record

    def iter_baselines(self) -> Iterator[tuple[SnapshotRecord, bytes]]:
        """Yield (record, image) for every readable baseline.

        Unreadable or inconsistent entries are logged and skipped, so the
        caller treats them as having no baseline.
        """
        for key in self.list(BASELINES_DIR):
            key_dir = f"{BASELINES_DIR}/{key}"
            try:
                record = self._read_record(f"{key_dir}/{META_FILE}")
                image = self.read(f"{key_dir}/{record.image_file}")
            except Exception as e:
                logger.warning("Skipping unreadable baseline %s: %s", key, e)
                continue
            if hashlib.sha256(image).hexdigest() != record.image_hash:
                logger.warning("Skipping baseline %s: image hash does not match sidecar", key)
                continue
            yield record, image

    # -- history -----------------------------------------------------------

    def _history_sequences(self, key: str) -> list[int]:
        seqs = []
        for name in self.list(f"{HISTORY_DIR}/{key}"):
            stem, _, ext = name.partition(".")
            if ext == "json" and stem.isdigit():
                seqs.append(int(stem))
        return sorted(seqs)

    def append_history(
        self, key: str, snapshot: Snapshot, comparison: ComparisonResult
    ) -> HistoryEntry:
        """Append a history entry for ``key`` and evict the oldest beyond ``max_snapshots``."""
        with self._lock:
            seqs = self._history_sequences(key)
            seq = (seqs[-1] + 1) if seqs else 1
            stem = f"{HISTORY_DIR}/{key}/{seq:08d}"
            record = SnapshotRecord(
                key=key,
                url=snapshot.url,
                viewport=snapshot.viewport,
                selector=snapshot.selector,
                captured_at=snapshot.captured_at,
                image_file=f"{seq:08d}.png",
                image_hash=hashlib.sha256(snapshot.image).hexdigest(),
                metadata=snapshot.metadata,
                comparison=comparison,
            )
            self.write(f"{stem}.png", snapshot.image)
            self._write_json(f"{stem}.json", record)
            seqs.append(seq)
            self._evict(key, seqs)

        return HistoryEntry(
            key=key, sequence=seq, record=record,
            comparison=comparison, timestamp=utc_now(),
        )

    def _evict(self, key: str, seqs: list[int]) -> None:
        excess = len(seqs) - self.max_snapshots
        if excess <= 0:
            return
        for seq in seqs[:excess]:
            stem = f"{HISTORY_DIR}/{key}/{seq:08d}"
            try:
                self._delete_diff_for(f"{stem}.json")
                self.delete(f"{stem}.json")
                self.delete(f"{stem}.png")
            except OSError as e:
                logger.error("Error evicting history entry %s/%d: %s", key, seq, e)
        logger.debug("Evicted %d history entries for %s", excess, key)

    def _delete_diff_for(self, sidecar: str) -> None:
        """Remove the diff image referenced by a history sidecar, if it is ours."""
        try:
            record = self._read_record(sidecar)
        except (OSError, ValueError) as e:
            logger.warning("Cannot read %s to clean up its diff image: %s", sidecar, e)
            return
        ref = record.comparison.diff_image_ref if record.comparison else None
        if not ref:
            return
        diff_path = Path(ref).resolve()
        if diff_path.parent != self._abs(DIFFS_DIR).resolve():
            logger.warning("Diff image %s is outside the store; leaving it", ref)
            return
        diff_path.unlink(missing_ok=True)

    def history(self, key: str) -> list[HistoryEntry]:
        """Retained history entries for ``key``, oldest first."""
        entries = []
        for seq in self._history_sequences(key):
            try:
                record = self._read_record(f"{HISTORY_DIR}/{key}/{seq:08d}.json")
            except Exception as e:
                logger.warning("Skipping unreadable history entry %s/%d: %s", key, seq, e)
                continue
            entries.append(HistoryEntry(
                key=key,
                sequence=seq,
                record=record,
                comparison=record.comparison or ComparisonResult(diff_ratio=0.0),
                timestamp=record.captured_at,
            ))
        return entries

    def history_keys(self) -> list[str]:
        return self.list(HISTORY_DIR)

    # -- diffs -------------------------------------------------------------

    def write_diff(self, key: str, image: bytes) -> str:
        """Persist a diff image and return its reference (absolute path)."""
        stamp = utc_now().replace(":", "-")
        path = f"{DIFFS_DIR}/{key}-{stamp}.png"
        n = 1
        while self._abs(path).exists():
            n += 1
            path = f"{DIFFS_DIR}/{key}-{stamp}-{n}.png"
        self.write(path, image)
        return str(self._abs(path))
