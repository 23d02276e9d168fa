"""Local durable snapshots of in-progress games, with periodic autosave."""

import json
import logging
import os
import tempfile
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from .settings import TrackerSettings

logger = logging.getLogger(__name__)


def _write_json_atomic(file_path: Path, data: dict | list) -> None:
    """
    Write JSON to file atomically using temp file + rename.

    Args:
        file_path: Target file path
        data: Data to write
    """
    file_path.parent.mkdir(parents=True, exist_ok=True)

    temp_fd, temp_path = tempfile.mkstemp(
        dir=file_path.parent, prefix=".tmp_", suffix=".json"
    )

    try:
        with os.fdopen(temp_fd, "w") as f:
            json.dump(data, f, indent=2)

        os.replace(temp_path, file_path)
    except (OSError, IOError):
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


class SnapshotStore:
    """
    One JSON snapshot per event under ``<data_dir>/snapshots/``.

    Args:
        data_dir: Base data directory (default "data")
    """

    def __init__(self, data_dir: str | Path = "data"):
        self.snapshot_dir = Path(data_dir) / "snapshots"

    def _path(self, event_id) -> Path:
        return self.snapshot_dir / f"{event_id}.json"

    def save_snapshot(self, event_id, snapshot: dict) -> None:
        _write_json_atomic(self._path(event_id), {"eventId": event_id, **snapshot})

    def load_snapshot(self, event_id) -> Optional[dict]:
        """Snapshot for an event, or None if missing or unreadable."""
        path = self._path(event_id)
        if not path.exists():
            return None
        try:
            with open(path) as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Could not read snapshot %s: %s", path, e)
            return None

    def clear_snapshot(self, event_id) -> None:
        path = self._path(event_id)
        if path.exists():
            os.remove(path)

    def list_snapshots(self) -> list[str]:
        if not self.snapshot_dir.exists():
            return []
        return sorted(p.stem for p in self.snapshot_dir.glob("*.json"))

    def prune_snapshots(
        self, older_than_days: int, reference: Optional[datetime] = None
    ) -> list[str]:
        """
        Remove snapshots last saved more than ``older_than_days`` ago.

        Snapshots without a readable ``savedAt`` fall back to the file's
        modification time.

        Args:
            older_than_days: Age threshold in days
            reference: Reference time (defaults to now)

        Returns:
            List of deleted paths for logging
        """
        if reference is None:
            reference = datetime.now()
        cutoff = (reference - timedelta(days=older_than_days)).timestamp()
        deleted_paths = []

        if not self.snapshot_dir.exists():
            return deleted_paths

        for snapshot_file in self.snapshot_dir.glob("*.json"):
            saved_at = None
            try:
                with open(snapshot_file) as f:
                    saved_at = json.load(f).get("savedAt")
            except (json.JSONDecodeError, IOError) as e:
                logger.warning("Unreadable snapshot %s: %s", snapshot_file, e)
            if saved_at is None:
                saved_at = snapshot_file.stat().st_mtime

            if saved_at < cutoff:
                os.remove(snapshot_file)
                deleted_paths.append(str(snapshot_file))

        return deleted_paths


class Autosaver:
    """
    Periodic and debounced local snapshots for one tracker.

    ``touch`` marks the tracker dirty after each recorded event; ``tick`` is
    called by the host loop and saves once the debounce has elapsed since the
    last change, or when the interval has elapsed since the last save.

    Args:
        store: SnapshotStore to write to
        event_id: Calendar event the game belongs to
        snapshot: Callable returning the tracker's snapshot dict
        settings: Autosave interval and debounce
        clock: Time source
    """

    def __init__(
        self,
        store: SnapshotStore,
        event_id,
        snapshot: Callable[[], dict],
        settings: Optional[TrackerSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.event_id = event_id
        self._snapshot = snapshot
        self.settings = settings or TrackerSettings()
        self._clock = clock
        self._dirty_since: Optional[float] = None
        self._last_change: Optional[float] = None
        self.last_saved_at: Optional[float] = None

    def touch(self, *_args) -> None:
        now = self._clock()
        if self._dirty_since is None:
            self._dirty_since = now
        self._last_change = now

    def due(self) -> bool:
        if self._dirty_since is None:
            return False
        now = self._clock()
        if now - self._last_change >= self.settings.autosave_debounce:
            return True
        last = self.last_saved_at if self.last_saved_at is not None else self._dirty_since
        return now - last >= self.settings.autosave_interval

    def tick(self) -> bool:
        """Save if due; returns True when a snapshot was written."""
        if not self.due():
            return False
        self.save()
        return True

    def save(self) -> None:
        self.store.save_snapshot(self.event_id, self._snapshot())
        self.last_saved_at = self._clock()
        self._dirty_since = None
        self._last_change = None
