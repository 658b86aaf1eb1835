"""Unit tests for the delegation registry."""

import hashlib
import json
from pathlib import Path

import pytest

from wuflow.core.state import (
    DelegationNotFoundError,
    DelegationRegistry,
    DelegationRegistryError,
    generate_delegation_id,
)


def test_delegation_id_is_deterministic() -> None:
    expected = "dlg-" + hashlib.sha256(b"WU-1:WU-2").hexdigest()[:8]

    assert generate_delegation_id("WU-1", "WU-2") == expected
    assert generate_delegation_id("WU-1", "WU-2") == expected
    assert generate_delegation_id("WU-2", "WU-1") != expected


def test_record_then_reload_keeps_latest_event_per_id(tmp_path: Path) -> None:
    registry = DelegationRegistry(tmp_path)
    delegation_id = registry.record("WU-1", "WU-2", "Core", intent="split out docs")
    registry.record_pickup(delegation_id, "agent-7", picked_up_at="2026-01-01T01:00:00Z")
    registry.update_status(delegation_id, "completed")

    reloaded = DelegationRegistry(tmp_path)
    reloaded.load()
    event = reloaded.get_by_id(delegation_id)

    assert event is not None
    assert event.status == "completed"
    assert event.picked_up_by == "agent-7"
    assert event.intent == "split out docs"
    assert event.completed_at is not None
    assert len(registry.path.read_text(encoding="utf-8").splitlines()) == 3
    assert len(reloaded.get_all()) == 1


def test_indexes_by_parent_and_target(tmp_path: Path) -> None:
    registry = DelegationRegistry(tmp_path)
    first = registry.record("WU-1", "WU-2", "Core")
    second = registry.record("WU-1", "WU-3", "Core")
    registry.update_status(first, "timeout")

    assert [event.id for event in registry.get_by_parent("WU-1")] == [first, second]
    assert registry.get_by_target("WU-3").id == second  # type: ignore[union-attr]
    assert [event.id for event in registry.get_pending()] == [second]
    assert registry.get_by_parent("WU-9") == []
    assert registry.get_by_target("WU-9") is None


def test_update_unknown_delegation_raises(tmp_path: Path) -> None:
    registry = DelegationRegistry(tmp_path)

    with pytest.raises(DelegationNotFoundError, match="dlg-missing"):
        registry.update_status("dlg-missing", "crashed")


def test_load_rejects_unknown_status(tmp_path: Path) -> None:
    registry = DelegationRegistry(tmp_path)
    record = {
        "id": "dlg-1",
        "parentWuId": "WU-1",
        "targetWuId": "WU-2",
        "lane": "Core",
        "status": "lost",
        "delegatedAt": "2026-01-01T00:00:00Z",
    }
    registry.path.write_text(json.dumps(record) + "\n", encoding="utf-8")

    with pytest.raises(DelegationRegistryError) as exc:
        registry.load()

    assert "at line 1" in str(exc.value)
    assert "status must be one of" in str(exc.value)


def test_missing_registry_loads_empty(tmp_path: Path) -> None:
    registry = DelegationRegistry(tmp_path / "nowhere")
    registry.load()

    assert registry.get_all() == []


def test_load_rejects_invalid_utf8(tmp_path: Path) -> None:
    registry = DelegationRegistry(tmp_path)
    registry.record("WU-1", "WU-2", "Core")
    with registry.path.open("ab") as file_handle:
        file_handle.write(b'{"id":"dlg-\xfe"}\n')

    with pytest.raises(DelegationRegistryError) as exc:
        registry.load()

    assert "at line 2" in str(exc.value)
    assert "invalid UTF-8" in str(exc.value)
