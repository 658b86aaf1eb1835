"""Registry of parent -> child WU delegations backed by its own JSONL log."""

from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Literal, Mapping, cast

from structlog import get_logger

from wuflow.constants import DELEGATION_REGISTRY_FILE_NAME
from wuflow.utils import utc_now_iso

logger = get_logger(__name__)

DelegationStatus = Literal["pending", "completed", "timeout", "crashed", "escalated"]

DELEGATION_STATUSES: tuple[DelegationStatus, ...] = ("pending", "completed", "timeout", "crashed", "escalated")

_REQUIRED_FIELDS = ("id", "parentWuId", "targetWuId", "lane", "status", "delegatedAt")
_OPTIONAL_FIELDS = ("intent", "completedAt", "pickedUpBy", "pickedUpAt")


class DelegationRegistryError(RuntimeError):
    """Raised when the delegation registry cannot be read or written safely."""


class DelegationNotFoundError(DelegationRegistryError):
    """Raised when a delegation id is not present in the registry."""


@dataclass(frozen=True)
class DelegationEvent:
    """One delegation fact. Later events with the same id supersede earlier ones."""

    id: str
    parent_wu_id: str
    target_wu_id: str
    lane: str
    status: DelegationStatus
    delegated_at: str
    intent: str | None = None
    completed_at: str | None = None
    picked_up_by: str | None = None
    picked_up_at: str | None = None


def generate_delegation_id(parent_wu_id: str, target_wu_id: str) -> str:
    """Deterministic id for a (parent, target) pair."""
    digest = hashlib.sha256(f"{parent_wu_id}:{target_wu_id}".encode("utf-8")).hexdigest()
    return f"dlg-{digest[:8]}"


def delegation_event_to_record(event: DelegationEvent) -> dict[str, object]:
    record: dict[str, object] = {
        "id": event.id,
        "parentWuId": event.parent_wu_id,
        "targetWuId": event.target_wu_id,
        "lane": event.lane,
        "status": event.status,
        "delegatedAt": event.delegated_at,
        "completedAt": event.completed_at,
    }
    if event.intent is not None:
        record["intent"] = event.intent
    if event.picked_up_by is not None:
        record["pickedUpBy"] = event.picked_up_by
    if event.picked_up_at is not None:
        record["pickedUpAt"] = event.picked_up_at
    return record


def delegation_event_from_record(record: Mapping[str, object]) -> DelegationEvent:
    """Validate a persisted record; raises DelegationRegistryError with all problems found."""
    diagnostics: list[str] = []
    missing = sorted(set(_REQUIRED_FIELDS) - set(record.keys()))
    unexpected = sorted(set(record.keys()) - set(_REQUIRED_FIELDS) - set(_OPTIONAL_FIELDS))
    if missing:
        diagnostics.append(f"missing required fields: {missing}")
    if unexpected:
        diagnostics.append(f"unexpected fields: {unexpected}")

    for field_name in _REQUIRED_FIELDS:
        value = record.get(field_name)
        if field_name in record and (not isinstance(value, str) or not value.strip()):
            diagnostics.append(f"{field_name} must be a non-empty string")
    for field_name in _OPTIONAL_FIELDS:
        value = record.get(field_name)
        if value is not None and not isinstance(value, str):
            diagnostics.append(f"{field_name} must be a string or null")

    status = record.get("status")
    if isinstance(status, str) and status not in DELEGATION_STATUSES:
        diagnostics.append(f"status must be one of {list(DELEGATION_STATUSES)} (got {status!r})")

    if diagnostics:
        raise DelegationRegistryError("; ".join(diagnostics))

    return DelegationEvent(
        id=cast(str, record["id"]),
        parent_wu_id=cast(str, record["parentWuId"]),
        target_wu_id=cast(str, record["targetWuId"]),
        lane=cast(str, record["lane"]),
        status=cast(DelegationStatus, status),
        delegated_at=cast(str, record["delegatedAt"]),
        intent=cast("str | None", record.get("intent")),
        completed_at=cast("str | None", record.get("completedAt")),
        picked_up_by=cast("str | None", record.get("pickedUpBy")),
        picked_up_at=cast("str | None", record.get("pickedUpAt")),
    )


class DelegationRegistry:
    """Delegations recorded under one base directory.

    `record()` creates, `update_status()` and `record_pickup()` append a new
    event with the same id. Replay keeps the latest event per id.
    """

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)
        self._path = self._base_dir / DELEGATION_REGISTRY_FILE_NAME
        self._delegations: dict[str, DelegationEvent] = {}
        self._by_parent: dict[str, list[str]] = {}
        self._by_target: dict[str, str] = {}

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        """Rebuild the registry from disk; an absent file is an empty registry."""
        self._delegations.clear()
        self._by_parent.clear()
        self._by_target.clear()
        if not self._path.exists():
            return

        with self._path.open("rb") as file_handle:
            for line_number, raw_bytes in enumerate(file_handle, start=1):
                try:
                    stripped = raw_bytes.decode("utf-8").strip()
                except UnicodeDecodeError as exc:
                    raise DelegationRegistryError(
                        f"corrupt delegation registry {self._path} at line {line_number}: invalid UTF-8"
                    ) from exc
                if not stripped:
                    continue
                try:
                    record = json.loads(stripped)
                except json.JSONDecodeError as exc:
                    raise DelegationRegistryError(
                        f"corrupt delegation registry {self._path} at line {line_number}: invalid JSON"
                    ) from exc
                if not isinstance(record, dict):
                    raise DelegationRegistryError(
                        f"corrupt delegation registry {self._path} at line {line_number}: expected object record"
                    )
                try:
                    event = delegation_event_from_record(record)
                except DelegationRegistryError as exc:
                    raise DelegationRegistryError(
                        f"corrupt delegation registry {self._path} at line {line_number}: {exc}"
                    ) from exc
                self._apply(event)

    def record(self, parent_wu_id: str, target_wu_id: str, lane: str, intent: str | None = None) -> str:
        """Record a new pending delegation and return its id."""
        event = DelegationEvent(
            id=generate_delegation_id(parent_wu_id, target_wu_id),
            parent_wu_id=parent_wu_id,
            target_wu_id=target_wu_id,
            lane=lane,
            status="pending",
            delegated_at=utc_now_iso(),
            intent=intent,
        )
        self._append(event)
        logger.info("Recorded delegation %s: %s -> %s", event.id, parent_wu_id, target_wu_id)
        return event.id

    def update_status(self, delegation_id: str, status: DelegationStatus) -> DelegationEvent:
        existing = self._require(delegation_id)
        event = replace(existing, status=status, completed_at=utc_now_iso())
        self._append(event)
        return event

    def record_pickup(self, delegation_id: str, picked_up_by: str, picked_up_at: str | None = None) -> DelegationEvent:
        """Mark that the target WU was actually claimed by someone."""
        existing = self._require(delegation_id)
        event = replace(existing, picked_up_by=picked_up_by, picked_up_at=picked_up_at or utc_now_iso())
        self._append(event)
        return event

    def get_by_id(self, delegation_id: str) -> DelegationEvent | None:
        return self._delegations.get(delegation_id)

    def get_by_parent(self, parent_wu_id: str) -> list[DelegationEvent]:
        return [self._delegations[dlg_id] for dlg_id in self._by_parent.get(parent_wu_id, [])]

    def get_by_target(self, target_wu_id: str) -> DelegationEvent | None:
        delegation_id = self._by_target.get(target_wu_id)
        if delegation_id is None:
            return None
        return self._delegations.get(delegation_id)

    def get_pending(self) -> list[DelegationEvent]:
        return [event for event in self._delegations.values() if event.status == "pending"]

    def get_all(self) -> list[DelegationEvent]:
        return list(self._delegations.values())

    def _require(self, delegation_id: str) -> DelegationEvent:
        existing = self._delegations.get(delegation_id)
        if existing is None:
            raise DelegationNotFoundError(f"Delegation ID {delegation_id} not found")
        return existing

    def _append(self, event: DelegationEvent) -> None:
        record = delegation_event_to_record(event)
        delegation_event_from_record(record)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as file_handle:
            file_handle.write(json.dumps(record, ensure_ascii=False, separators=(",", ":")))
            file_handle.write("\n")
            file_handle.flush()
            os.fsync(file_handle.fileno())
        self._apply(event)

    def _apply(self, event: DelegationEvent) -> None:
        self._delegations[event.id] = event
        parent_ids = self._by_parent.setdefault(event.parent_wu_id, [])
        if event.id not in parent_ids:
            parent_ids.append(event.id)
        self._by_target[event.target_wu_id] = event.id
