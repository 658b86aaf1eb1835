"""In-memory WU state derived from the event log by pure replay."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Literal

from wuflow.core.state.events import WUEvent

WUStatus = Literal["in_progress", "blocked", "ready", "done"]

WU_STATUSES: tuple[WUStatus, ...] = ("in_progress", "blocked", "ready", "done")

_TARGET_STATUS: dict[str, WUStatus] = {
    "block": "blocked",
    "unblock": "in_progress",
    "release": "ready",
    "complete": "done",
}


@dataclass(frozen=True)
class WUState:
    """Current derived state of one WU."""

    wu_id: str
    status: WUStatus
    lane: str
    title: str
    completed_at: str | None = None
    last_checkpoint: str | None = None
    last_checkpoint_note: str | None = None


class WUStateIndexer:
    """Fold WU events into lookup structures.

    Holds no I/O. Events naming a WU that was never created or claimed are
    ignored and never synthesize state.
    """

    def __init__(self) -> None:
        self.clear()

    def clear(self) -> None:
        """Drop all derived state."""
        self._states: dict[str, WUState] = {}
        self._by_status: dict[str, set[str]] = {status: set() for status in WU_STATUSES}
        self._by_lane: dict[str, set[str]] = {}
        self._by_parent: dict[str, set[str]] = {}

    def replay(self, events: Iterable[WUEvent]) -> None:
        """Rebuild every structure from an ordered event sequence."""
        self.clear()
        for event in events:
            self.apply(event)

    def apply(self, event: WUEvent) -> None:
        """Apply one validated event."""
        if event.type in ("create", "claim"):
            self._apply_claim(event)
        elif event.type in _TARGET_STATUS:
            self._apply_status_change(event)
        elif event.type == "checkpoint":
            self._apply_checkpoint(event)
        else:
            self._apply_delegation(event)

    def get_wu_state(self, wu_id: str) -> WUState | None:
        return self._states.get(wu_id)

    def get_by_status(self, status: str) -> frozenset[str]:
        return frozenset(self._by_status.get(status, ()))

    def get_by_lane(self, lane: str) -> frozenset[str]:
        return frozenset(self._by_lane.get(lane, ()))

    def get_child_wus(self, parent_wu_id: str) -> frozenset[str]:
        return frozenset(self._by_parent.get(parent_wu_id, ()))

    def all_states(self) -> tuple[WUState, ...]:
        """Every known WU, ordered by id."""
        return tuple(self._states[wu_id] for wu_id in sorted(self._states))

    def _apply_claim(self, event: WUEvent) -> None:
        lane = event.lane or ""
        title = event.title or ""
        previous = self._states.get(event.wu_id)
        if previous is not None:
            self._by_status[previous.status].discard(event.wu_id)
            self._remove_from_lane(previous.lane, event.wu_id)
        self._states[event.wu_id] = WUState(wu_id=event.wu_id, status="in_progress", lane=lane, title=title)
        self._by_status["in_progress"].add(event.wu_id)
        self._by_lane.setdefault(lane, set()).add(event.wu_id)

    def _apply_status_change(self, event: WUEvent) -> None:
        current = self._states.get(event.wu_id)
        if current is None:
            return
        target = _TARGET_STATUS[event.type]
        if event.type == "complete":
            updated = replace(current, status=target, completed_at=event.timestamp)
        else:
            updated = replace(current, status=target)
        self._by_status[current.status].discard(event.wu_id)
        self._by_status[target].add(event.wu_id)
        self._states[event.wu_id] = updated

    def _apply_checkpoint(self, event: WUEvent) -> None:
        current = self._states.get(event.wu_id)
        if current is None:
            return
        self._states[event.wu_id] = replace(
            current, last_checkpoint=event.timestamp, last_checkpoint_note=event.note
        )

    def _apply_delegation(self, event: WUEvent) -> None:
        if event.parent_wu_id is None:
            return
        self._by_parent.setdefault(event.parent_wu_id, set()).add(event.wu_id)

    def _remove_from_lane(self, lane: str, wu_id: str) -> None:
        members = self._by_lane.get(lane)
        if members is None:
            return
        members.discard(wu_id)
        if not members:
            del self._by_lane[lane]
