"""Crash-safe persistence of pipeline snapshots, one JSON file per WU."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path

from wuflow.constants import PIPELINE_SNAPSHOT_DIR
from wuflow.core.pipeline.machine import PipelineSnapshot

_SNAPSHOT_VERSION = 1
_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class PipelineSnapshotError(ValueError):
    """Raised when a persisted snapshot cannot be read back."""


class PipelineSnapshotStore:
    def __init__(self, state_dir: Path) -> None:
        self._dir = Path(state_dir) / PIPELINE_SNAPSHOT_DIR

    def path_for(self, wu_id: str) -> Path:
        if not _SAFE_ID.match(wu_id):
            raise PipelineSnapshotError(f"invalid WU id for snapshot file name: {wu_id!r}")
        return self._dir / f"{wu_id}.json"

    def save(self, wu_id: str, snapshot: PipelineSnapshot) -> Path:
        """Write the snapshot atomically (temp file, fsync, rename)."""
        path = self.path_for(wu_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"version": _SNAPSHOT_VERSION, "wuId": wu_id, "snapshot": snapshot.to_dict()}
        serialized = json.dumps(payload, ensure_ascii=True, indent=2, sort_keys=True)
        temp_path = path.with_suffix(f"{path.suffix}.tmp")

        with temp_path.open("w", encoding="utf-8") as file_handle:
            file_handle.write(serialized)
            file_handle.flush()
            os.fsync(file_handle.fileno())

        os.replace(temp_path, path)
        return path

    def load(self, wu_id: str) -> PipelineSnapshot | None:
        path = self.path_for(wu_id)
        if not path.exists():
            return None

        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise PipelineSnapshotError(f"invalid pipeline snapshot JSON: {path}") from exc
        if not isinstance(payload, dict):
            raise PipelineSnapshotError(f"invalid pipeline snapshot payload type: expected object at {path}")
        if payload.get("version") != _SNAPSHOT_VERSION:
            raise PipelineSnapshotError(f"unsupported pipeline snapshot version {payload.get('version')!r} at {path}")
        raw_snapshot = payload.get("snapshot")
        if not isinstance(raw_snapshot, dict):
            raise PipelineSnapshotError(f"pipeline snapshot at {path} has no snapshot object")

        try:
            return PipelineSnapshot.from_dict(raw_snapshot)
        except ValueError as exc:
            raise PipelineSnapshotError(f"invalid pipeline snapshot at {path}: {exc}") from exc

    def delete(self, wu_id: str) -> bool:
        path = self.path_for(wu_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True
