"""Append-only JSONL log of WU lifecycle events."""

from __future__ import annotations

import json
import os
from pathlib import Path

from structlog import get_logger

from wuflow.constants import WU_EVENTS_FILE_NAME
from wuflow.core.state.events import (
    WUEvent,
    WUEventValidationError,
    validate_event,
    wu_event_from_record,
    wu_event_to_record,
)

logger = get_logger(__name__)


class WUEventLogError(RuntimeError):
    """Raised when the event log cannot be read without losing or inventing facts."""


class WUEventLog:
    """File-backed append-only event log.

    Existing lines are never rewritten. Loading is fail-closed: the first
    malformed line aborts the read with its line number.
    """

    def __init__(self, state_dir: Path, file_name: str = WU_EVENTS_FILE_NAME) -> None:
        self._path = Path(state_dir) / file_name

    @property
    def path(self) -> Path:
        return self._path

    def append(self, event: WUEvent) -> WUEvent:
        """Validate and persist one event as a single JSON line."""
        validated = validate_event(event)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        serialized = json.dumps(wu_event_to_record(validated), ensure_ascii=False, separators=(",", ":"))
        with self._path.open("a", encoding="utf-8") as file_handle:
            file_handle.write(serialized)
            file_handle.write("\n")
            file_handle.flush()
            os.fsync(file_handle.fileno())
        logger.debug("Appended %s event for %s", validated.type, validated.wu_id)
        return validated

    def load(self) -> tuple[WUEvent, ...]:
        """Return every event in append order; an absent file is an empty log."""
        if not self._path.exists():
            return ()

        events: list[WUEvent] = []
        with self._path.open("rb") as file_handle:
            for line_number, raw_bytes in enumerate(file_handle, start=1):
                try:
                    stripped = raw_bytes.decode("utf-8").strip()
                except UnicodeDecodeError as exc:
                    raise WUEventLogError(
                        f"corrupt WU event log {self._path} at line {line_number}: invalid UTF-8"
                    ) from exc
                if not stripped:
                    continue
                try:
                    record = json.loads(stripped)
                except json.JSONDecodeError as exc:
                    raise WUEventLogError(
                        f"corrupt WU event log {self._path} at line {line_number}: invalid JSON"
                    ) from exc
                if not isinstance(record, dict):
                    raise WUEventLogError(
                        f"corrupt WU event log {self._path} at line {line_number}: expected object record"
                    )
                try:
                    events.append(wu_event_from_record(record))
                except WUEventValidationError as exc:
                    raise WUEventLogError(
                        f"corrupt WU event log {self._path} at line {line_number}: {'; '.join(exc.diagnostics)}"
                    ) from exc
        return tuple(events)
