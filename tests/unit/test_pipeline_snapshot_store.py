"""Unit tests for pipeline snapshot persistence."""

import json
from pathlib import Path

import pytest

from wuflow.core.pipeline import (
    CompletionMachine,
    PipelineEvent,
    PipelineEventType,
    PipelineSnapshotError,
    PipelineSnapshotStore,
    PipelineState,
)


def _gating_snapshot():
    machine = CompletionMachine()
    machine.send(PipelineEvent(PipelineEventType.START, wu_id="WU-5", worktree_path="/wt", prep_passed=True))
    machine.send(PipelineEvent(PipelineEventType.VALIDATION_PASSED))
    machine.send(PipelineEvent(PipelineEventType.PREPARATION_COMPLETE))
    return machine.snapshot


def test_save_then_load_restores_snapshot(tmp_path: Path) -> None:
    store = PipelineSnapshotStore(tmp_path)
    snapshot = _gating_snapshot()

    path = store.save("WU-5", snapshot)

    assert path == tmp_path / "pipeline" / "WU-5.json"
    assert not path.with_suffix(".json.tmp").exists()
    assert store.load("WU-5") == snapshot
    assert store.load("WU-5").value is PipelineState.GATING  # type: ignore[union-attr]


def test_payload_is_versioned(tmp_path: Path) -> None:
    store = PipelineSnapshotStore(tmp_path)
    path = store.save("WU-5", _gating_snapshot())

    payload = json.loads(path.read_text(encoding="utf-8"))

    assert payload["version"] == 1
    assert payload["wuId"] == "WU-5"
    assert payload["snapshot"]["value"] == "gating"
    assert payload["snapshot"]["context"]["prepPassed"] is True


def test_missing_snapshot_loads_none_and_delete_reports_absence(tmp_path: Path) -> None:
    store = PipelineSnapshotStore(tmp_path)

    assert store.load("WU-9") is None
    assert store.delete("WU-9") is False

    store.save("WU-9", _gating_snapshot())
    assert store.delete("WU-9") is True
    assert store.load("WU-9") is None


def test_unsafe_wu_id_is_rejected(tmp_path: Path) -> None:
    store = PipelineSnapshotStore(tmp_path)

    with pytest.raises(PipelineSnapshotError, match="invalid WU id"):
        store.path_for("../escape")


def test_corrupt_snapshot_raises(tmp_path: Path) -> None:
    store = PipelineSnapshotStore(tmp_path)
    path = store.path_for("WU-5")
    path.parent.mkdir(parents=True)

    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(PipelineSnapshotError, match="invalid pipeline snapshot JSON"):
        store.load("WU-5")

    path.write_text(json.dumps({"version": 2, "snapshot": {}}), encoding="utf-8")
    with pytest.raises(PipelineSnapshotError, match="unsupported pipeline snapshot version"):
        store.load("WU-5")

    path.write_text(json.dumps({"version": 1, "snapshot": {"value": "nowhere", "context": {}}}), encoding="utf-8")
    with pytest.raises(PipelineSnapshotError, match="invalid pipeline snapshot at"):
        store.load("WU-5")
