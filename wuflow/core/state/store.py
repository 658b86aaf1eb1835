"""WU lifecycle commands over the event log and its derived index."""

from __future__ import annotations

from pathlib import Path

from structlog import get_logger

from wuflow.core.state.event_log import WUEventLog
from wuflow.core.state.events import WUEvent, WUEventType, build_wu_event, validate_event
from wuflow.core.state.indexer import WUState, WUStateIndexer

logger = get_logger(__name__)


class WUTransitionError(RuntimeError):
    """Raised when a lifecycle command does not fit the WU's current status."""


class WUStateStore:
    """Durable WU state: every command validates, appends, then applies.

    The log at `state_dir` is the sole source of truth; the index is
    rebuilt from it by `load()`.
    """

    def __init__(self, state_dir: Path) -> None:
        self._log = WUEventLog(state_dir)
        self._indexer = WUStateIndexer()

    @property
    def event_log(self) -> WUEventLog:
        return self._log

    def load(self) -> None:
        """Replay the whole log into a fresh index."""
        events = self._log.load()
        self._indexer.replay(events)
        logger.debug("Loaded %d WU events from %s", len(events), self._log.path)

    def clear(self) -> None:
        self._indexer.clear()

    # --- reads ---

    def get_wu_state(self, wu_id: str) -> WUState | None:
        return self._indexer.get_wu_state(wu_id)

    def get_by_status(self, status: str) -> frozenset[str]:
        return self._indexer.get_by_status(status)

    def get_by_lane(self, lane: str) -> frozenset[str]:
        return self._indexer.get_by_lane(lane)

    def get_child_wus(self, parent_wu_id: str) -> frozenset[str]:
        return self._indexer.get_child_wus(parent_wu_id)

    # --- commands ---

    def create(self, wu_id: str, lane: str, title: str) -> WUEvent:
        if self._indexer.get_wu_state(wu_id) is not None:
            raise WUTransitionError(f"WU {wu_id} already exists")
        return self._append("create", {"wuId": wu_id, "lane": lane, "title": title})

    def claim(self, wu_id: str, lane: str, title: str) -> WUEvent:
        current = self._indexer.get_wu_state(wu_id)
        if current is not None and current.status == "in_progress":
            raise WUTransitionError(f"WU {wu_id} is already in_progress")
        return self._append("claim", {"wuId": wu_id, "lane": lane, "title": title})

    def block(self, wu_id: str, reason: str) -> WUEvent:
        self._require_status(wu_id, "in_progress", "block")
        return self._append("block", {"wuId": wu_id, "reason": reason})

    def unblock(self, wu_id: str) -> WUEvent:
        self._require_status(wu_id, "blocked", "unblock")
        return self._append("unblock", {"wuId": wu_id})

    def release(self, wu_id: str, reason: str) -> WUEvent:
        self._require_status(wu_id, "in_progress", "release")
        return self._append("release", {"wuId": wu_id, "reason": reason})

    def complete(self, wu_id: str) -> WUEvent:
        self._require_status(wu_id, "in_progress", "complete")
        return self._append("complete", {"wuId": wu_id})

    def checkpoint(
        self,
        wu_id: str,
        note: str,
        *,
        session_id: str | None = None,
        progress: str | None = None,
        next_steps: str | None = None,
    ) -> WUEvent:
        fields: dict[str, object] = {"wuId": wu_id, "note": note}
        if session_id is not None:
            fields["sessionId"] = session_id
        if progress is not None:
            fields["progress"] = progress
        if next_steps is not None:
            fields["nextSteps"] = next_steps
        return self._append("checkpoint", fields)

    def delegate(self, child_wu_id: str, parent_wu_id: str, delegation_id: str) -> WUEvent:
        return self._append(
            "delegation", {"wuId": child_wu_id, "parentWuId": parent_wu_id, "delegationId": delegation_id}
        )

    def create_complete_event(self, wu_id: str, timestamp: str | None = None) -> WUEvent:
        """Build a validated `complete` event without persisting or applying it.

        Used by flows that stage the log line inside a micro-worktree and
        land it through a commit rather than a direct append.
        """
        self._require_status(wu_id, "in_progress", "complete")
        return build_wu_event("complete", {"wuId": wu_id, "timestamp": timestamp})

    def apply_event(self, event: WUEvent) -> None:
        """Apply a validated event to the in-memory index only."""
        self._indexer.apply(validate_event(event))

    def _append(self, event_type: WUEventType, fields: dict[str, object]) -> WUEvent:
        event = build_wu_event(event_type, fields)
        self._log.append(event)
        self._indexer.apply(event)
        logger.info("WU %s: %s", event.wu_id, event.type)
        return event

    def _require_status(self, wu_id: str, expected: str, command: str) -> None:
        current = self._indexer.get_wu_state(wu_id)
        if current is None:
            raise WUTransitionError(f"Cannot {command} {wu_id}: WU not found")
        if current.status != expected:
            raise WUTransitionError(
                f"Cannot {command} {wu_id}: status is {current.status}, expected {expected}"
            )
