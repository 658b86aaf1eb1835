"""Canonical WU lifecycle event contracts and validation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Literal, Mapping, TypedDict, cast

from wuflow.utils import utc_now_iso

WUEventType = Literal["create", "claim", "block", "unblock", "checkpoint", "complete", "release", "delegation"]


class WUEventRecord(TypedDict, total=False):
    """Serialized WU event as written to one JSONL line."""

    type: WUEventType
    wuId: str
    timestamp: str
    lane: str
    title: str
    reason: str
    note: str
    sessionId: str
    progress: str
    nextSteps: str
    parentWuId: str
    delegationId: str


_COMMON_FIELDS: tuple[str, ...] = ("type", "wuId", "timestamp")

_REQUIRED_FIELDS: Mapping[WUEventType, tuple[str, ...]] = MappingProxyType(
    {
        "create": ("lane", "title"),
        "claim": ("lane", "title"),
        "block": ("reason",),
        "unblock": (),
        "checkpoint": ("note",),
        "complete": (),
        "release": ("reason",),
        "delegation": ("parentWuId", "delegationId"),
    }
)

_OPTIONAL_FIELDS: Mapping[WUEventType, tuple[str, ...]] = MappingProxyType(
    {"checkpoint": ("sessionId", "progress", "nextSteps")}
)

# Record key -> WUEvent attribute for type-specific fields.
_ATTRIBUTE_BY_FIELD: Mapping[str, str] = MappingProxyType(
    {
        "lane": "lane",
        "title": "title",
        "reason": "reason",
        "note": "note",
        "sessionId": "session_id",
        "progress": "progress",
        "nextSteps": "next_steps",
        "parentWuId": "parent_wu_id",
        "delegationId": "delegation_id",
    }
)


class WUEventValidationError(ValueError):
    """Raised when a candidate WU event does not match its schema."""

    def __init__(self, event_type: str, diagnostics: list[str]) -> None:
        message = f"Invalid WU event '{event_type}': " + "; ".join(diagnostics)
        super().__init__(message)
        self.event_type = event_type
        self.diagnostics = tuple(diagnostics)


@dataclass(frozen=True)
class WUEvent:
    """One immutable fact in the WU lifecycle log.

    Only the fields relevant to `type` are populated; the rest stay None.
    """

    type: WUEventType
    wu_id: str
    timestamp: str
    lane: str | None = None
    title: str | None = None
    reason: str | None = None
    note: str | None = None
    session_id: str | None = None
    progress: str | None = None
    next_steps: str | None = None
    parent_wu_id: str | None = None
    delegation_id: str | None = None


def parse_event_type(raw_event_type: object) -> WUEventType:
    """Validate and narrow a raw event type to the canonical set."""
    if not isinstance(raw_event_type, str) or raw_event_type not in _REQUIRED_FIELDS:
        raise WUEventValidationError(
            str(raw_event_type),
            [f"unsupported type {raw_event_type!r} (allowed: {sorted(_REQUIRED_FIELDS)})"],
        )
    return cast(WUEventType, raw_event_type)


def build_wu_event(event_type: WUEventType, fields: Mapping[str, object]) -> WUEvent:
    """Validate raw record fields and produce a canonical event.

    `fields` uses the wire (camelCase) keys without `type`. A missing
    `timestamp` defaults to now.
    """
    record: dict[str, object] = {"type": event_type, **fields}
    if "timestamp" not in record or record["timestamp"] is None:
        record["timestamp"] = utc_now_iso()
    return wu_event_from_record(record)


def wu_event_from_record(record: Mapping[str, object]) -> WUEvent:
    """Build a canonical event from a persisted record, enforcing the schema."""
    event_type = parse_event_type(record.get("type"))
    diagnostics = _validate_field_set(event_type, record)

    wu_id = _as_non_empty_str(record, "wuId", diagnostics)
    timestamp = _as_iso8601(record, "timestamp", diagnostics)

    attributes: dict[str, str] = {}
    for field_name in _REQUIRED_FIELDS[event_type]:
        attributes[_ATTRIBUTE_BY_FIELD[field_name]] = _as_non_empty_str(record, field_name, diagnostics)
    for field_name in _OPTIONAL_FIELDS.get(event_type, ()):
        if record.get(field_name) is None:
            continue
        attributes[_ATTRIBUTE_BY_FIELD[field_name]] = _as_non_empty_str(record, field_name, diagnostics)

    if diagnostics:
        raise WUEventValidationError(event_type, diagnostics)

    return WUEvent(type=event_type, wu_id=wu_id, timestamp=timestamp, **attributes)


def wu_event_to_record(event: WUEvent) -> WUEventRecord:
    """Convert an event to its JSON-serializable wire record."""
    record: dict[str, object] = {"type": event.type, "wuId": event.wu_id, "timestamp": event.timestamp}
    allowed = _REQUIRED_FIELDS[event.type] + _OPTIONAL_FIELDS.get(event.type, ())
    for field_name in allowed:
        value = getattr(event, _ATTRIBUTE_BY_FIELD[field_name])
        if value is not None:
            record[field_name] = value
    return cast(WUEventRecord, record)


def validate_event(event: WUEvent) -> WUEvent:
    """Re-validate an in-memory event by round-tripping it through its record."""
    return wu_event_from_record(wu_event_to_record(event))


def _validate_field_set(event_type: WUEventType, record: Mapping[str, object]) -> list[str]:
    required = set(_COMMON_FIELDS) | set(_REQUIRED_FIELDS[event_type])
    allowed = required | set(_OPTIONAL_FIELDS.get(event_type, ()))
    present = set(record.keys())

    missing = sorted(required - present)
    unexpected = sorted(present - allowed)

    diagnostics: list[str] = []
    if missing:
        diagnostics.append(f"missing required fields: {missing}")
    if unexpected:
        diagnostics.append(f"unexpected fields: {unexpected}")
    return diagnostics


def _as_non_empty_str(record: Mapping[str, object], field_name: str, diagnostics: list[str]) -> str:
    raw = record.get(field_name)
    if not isinstance(raw, str) or not raw.strip():
        if field_name in record:
            diagnostics.append(f"{field_name} must be a non-empty string")
        return ""
    return raw


def _as_iso8601(record: Mapping[str, object], field_name: str, diagnostics: list[str]) -> str:
    raw = record.get(field_name)
    if not isinstance(raw, str) or not raw.strip():
        if field_name in record:
            diagnostics.append(f"{field_name} must be a non-empty ISO8601 string")
        return ""
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        diagnostics.append(f"{field_name} must be valid ISO8601 (value={raw!r})")
        return ""
    if parsed.tzinfo is None:
        diagnostics.append(f"{field_name} must include timezone offset")
        return ""
    # Kept verbatim, never normalized.
    return raw
