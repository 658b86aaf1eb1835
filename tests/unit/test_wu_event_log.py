"""Unit tests for the append-only WU event log."""

import json
from pathlib import Path

import pytest

from wuflow.core.state import WUEvent, WUEventLog, WUEventLogError, WUEventValidationError


def _write_lines(path: Path, lines: list[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def test_missing_file_loads_as_empty(tmp_path: Path) -> None:
    log = WUEventLog(tmp_path / "state")

    assert log.load() == ()


def test_append_writes_one_compact_json_line(tmp_path: Path) -> None:
    log = WUEventLog(tmp_path / "state")
    event = WUEvent(type="claim", wu_id="WU-1", timestamp="2026-01-01T00:00:00Z", lane="Core", title="Do it")

    log.append(event)
    log.append(WUEvent(type="complete", wu_id="WU-1", timestamp="2026-01-02T00:00:00Z"))

    lines = log.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert lines[0].startswith('{"type":"claim","wuId":"WU-1",')
    assert json.loads(lines[0]) == {
        "type": "claim",
        "wuId": "WU-1",
        "timestamp": "2026-01-01T00:00:00Z",
        "lane": "Core",
        "title": "Do it",
    }
    assert [event.type for event in log.load()] == ["claim", "complete"]


def test_append_rejects_invalid_event_without_writing(tmp_path: Path) -> None:
    log = WUEventLog(tmp_path / "state")

    with pytest.raises(WUEventValidationError):
        log.append(WUEvent(type="block", wu_id="WU-1", timestamp="2026-01-01T00:00:00Z"))

    assert not log.path.exists()


def test_blank_lines_are_skipped(tmp_path: Path) -> None:
    log = WUEventLog(tmp_path)
    record = {"type": "unblock", "wuId": "WU-1", "timestamp": "2026-01-01T00:00:00Z"}
    _write_lines(log.path, [json.dumps(record), "", "   ", json.dumps(record)])

    assert len(log.load()) == 2


def test_invalid_json_reports_line_number(tmp_path: Path) -> None:
    log = WUEventLog(tmp_path)
    valid = json.dumps({"type": "unblock", "wuId": "WU-1", "timestamp": "2026-01-01T00:00:00Z"})
    _write_lines(log.path, [valid, valid, "{not json"])

    with pytest.raises(WUEventLogError) as exc:
        log.load()

    assert "at line 3" in str(exc.value)
    assert "invalid JSON" in str(exc.value)


def test_schema_violation_reports_line_and_diagnostics(tmp_path: Path) -> None:
    log = WUEventLog(tmp_path)
    _write_lines(log.path, [json.dumps({"type": "block", "wuId": "WU-1", "timestamp": "2026-01-01T00:00:00Z"})])

    with pytest.raises(WUEventLogError) as exc:
        log.load()

    assert "at line 1" in str(exc.value)
    assert "missing required fields: ['reason']" in str(exc.value)


def test_non_object_line_is_corrupt(tmp_path: Path) -> None:
    log = WUEventLog(tmp_path)
    _write_lines(log.path, ['["claim"]'])

    with pytest.raises(WUEventLogError) as exc:
        log.load()

    assert "expected object record" in str(exc.value)


def test_invalid_utf8_reports_line_number(tmp_path: Path) -> None:
    log = WUEventLog(tmp_path)
    valid = json.dumps({"type": "unblock", "wuId": "WU-1", "timestamp": "2026-01-01T00:00:00Z"})
    broken = b'{"type":"claim","wuId":"WU-1","timestamp":"2026-01-01T00:00:00Z","lane":"Core","title":"\xff"}'
    log.path.parent.mkdir(parents=True, exist_ok=True)
    log.path.write_bytes(valid.encode("utf-8") + b"\n" + broken + b"\n")

    with pytest.raises(WUEventLogError) as exc:
        log.load()

    assert "at line 2" in str(exc.value)
    assert "invalid UTF-8" in str(exc.value)
