"""State machine for the multi-phase WU completion pipeline.

The machine is a pure transition table keyed by `(state, event type)`.
It performs no I/O: the caller runs each phase's collaborator and sends
the matching event. Events that are not in the table for the current
state, or whose guard fails, are ignored and leave the snapshot as is.

State and event names are persisted in snapshots and must stay stable.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Callable, Literal, Mapping


class PipelineState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    PREPARING = "preparing"
    GATING = "gating"
    COMMITTING = "committing"
    MERGING = "merging"
    PUSHING = "pushing"
    CLEANING_UP = "cleaningUp"
    DONE = "done"
    FAILED = "failed"


class PipelineEventType(str, Enum):
    START = "wu.done.start"
    VALIDATION_PASSED = "wu.done.validation.passed"
    VALIDATION_FAILED = "wu.done.validation.failed"
    PREPARATION_COMPLETE = "wu.done.preparation.complete"
    PREPARATION_FAILED = "wu.done.preparation.failed"
    GATES_PASSED = "wu.done.gates.passed"
    GATES_FAILED = "wu.done.gates.failed"
    GATES_SKIPPED = "wu.done.gates.skipped"
    COMMIT_COMPLETE = "wu.done.commit.complete"
    COMMIT_FAILED = "wu.done.commit.failed"
    MERGE_COMPLETE = "wu.done.merge.complete"
    MERGE_FAILED = "wu.done.merge.failed"
    PUSH_COMPLETE = "wu.done.push.complete"
    PUSH_FAILED = "wu.done.push.failed"
    CLEANUP_COMPLETE = "wu.done.cleanup.complete"
    CLEANUP_FAILED = "wu.done.cleanup.failed"
    RETRY = "wu.done.retry"


SnapshotStatus = Literal["active", "done"]


@dataclass(frozen=True)
class PipelineEvent:
    """One event sent to the machine.

    `wu_id`, `worktree_path` and `prep_passed` are read by START only;
    `error` by the failure events.
    """

    type: PipelineEventType
    wu_id: str | None = None
    worktree_path: str | None = None
    prep_passed: bool | None = None
    error: str | None = None


@dataclass(frozen=True)
class PipelineContext:
    wu_id: str | None = None
    worktree_path: str | None = None
    prep_passed: bool = False
    error: str | None = None
    failed_at: PipelineState | None = None
    retry_count: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "wuId": self.wu_id,
            "worktreePath": self.worktree_path,
            "prepPassed": self.prep_passed,
            "error": self.error,
            "failedAt": self.failed_at.value if self.failed_at is not None else None,
            "retryCount": self.retry_count,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> PipelineContext:
        failed_at = payload.get("failedAt")
        retry_count = payload.get("retryCount", 0)
        if not isinstance(retry_count, int) or isinstance(retry_count, bool) or retry_count < 0:
            raise ValueError(f"retryCount must be a non-negative integer (got {retry_count!r})")
        prep_passed = payload.get("prepPassed", False)
        if not isinstance(prep_passed, bool):
            raise ValueError(f"prepPassed must be a boolean (got {prep_passed!r})")
        return cls(
            wu_id=_optional_str(payload, "wuId"),
            worktree_path=_optional_str(payload, "worktreePath"),
            prep_passed=prep_passed,
            error=_optional_str(payload, "error"),
            failed_at=PipelineState(failed_at) if failed_at is not None else None,
            retry_count=retry_count,
        )


@dataclass(frozen=True)
class PipelineSnapshot:
    """Current state value plus context; serializable at any point."""

    value: PipelineState
    context: PipelineContext

    @property
    def status(self) -> SnapshotStatus:
        return "done" if self.value is PipelineState.DONE else "active"

    def to_dict(self) -> dict[str, object]:
        return {"value": self.value.value, "context": self.context.to_dict(), "status": self.status}

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> PipelineSnapshot:
        raw_value = payload.get("value")
        raw_context = payload.get("context")
        if not isinstance(raw_value, str):
            raise ValueError(f"snapshot value must be a state name (got {raw_value!r})")
        if not isinstance(raw_context, Mapping):
            raise ValueError("snapshot context must be an object")
        return cls(value=PipelineState(raw_value), context=PipelineContext.from_dict(raw_context))


TransitionFn = Callable[[PipelineContext, PipelineEvent], "tuple[PipelineState, PipelineContext] | None"]


def _advance_to(target: PipelineState) -> TransitionFn:
    def _transition(context: PipelineContext, event: PipelineEvent) -> tuple[PipelineState, PipelineContext]:
        return target, context

    return _transition


def _fail_from(source: PipelineState) -> TransitionFn:
    def _transition(context: PipelineContext, event: PipelineEvent) -> tuple[PipelineState, PipelineContext]:
        return PipelineState.FAILED, replace(context, error=event.error, failed_at=source)

    return _transition


def _start(context: PipelineContext, event: PipelineEvent) -> tuple[PipelineState, PipelineContext]:
    prep_passed = context.prep_passed if event.prep_passed is None else event.prep_passed
    return PipelineState.VALIDATING, replace(
        context,
        wu_id=event.wu_id if event.wu_id is not None else context.wu_id,
        worktree_path=event.worktree_path if event.worktree_path is not None else context.worktree_path,
        prep_passed=prep_passed,
    )


def _skip_gates(context: PipelineContext, event: PipelineEvent) -> tuple[PipelineState, PipelineContext] | None:
    if not context.prep_passed:
        return None
    return PipelineState.COMMITTING, context


def _retry(context: PipelineContext, event: PipelineEvent) -> tuple[PipelineState, PipelineContext]:
    return PipelineState.VALIDATING, replace(
        context, error=None, failed_at=None, retry_count=context.retry_count + 1
    )


_S = PipelineState
_E = PipelineEventType

TRANSITIONS: Mapping[tuple[PipelineState, PipelineEventType], TransitionFn] = MappingProxyType(
    {
        (_S.IDLE, _E.START): _start,
        (_S.VALIDATING, _E.VALIDATION_PASSED): _advance_to(_S.PREPARING),
        (_S.VALIDATING, _E.VALIDATION_FAILED): _fail_from(_S.VALIDATING),
        (_S.PREPARING, _E.PREPARATION_COMPLETE): _advance_to(_S.GATING),
        (_S.PREPARING, _E.PREPARATION_FAILED): _fail_from(_S.PREPARING),
        (_S.GATING, _E.GATES_PASSED): _advance_to(_S.COMMITTING),
        (_S.GATING, _E.GATES_SKIPPED): _skip_gates,
        (_S.GATING, _E.GATES_FAILED): _fail_from(_S.GATING),
        (_S.COMMITTING, _E.COMMIT_COMPLETE): _advance_to(_S.MERGING),
        (_S.COMMITTING, _E.COMMIT_FAILED): _fail_from(_S.COMMITTING),
        (_S.MERGING, _E.MERGE_COMPLETE): _advance_to(_S.PUSHING),
        (_S.MERGING, _E.MERGE_FAILED): _fail_from(_S.MERGING),
        (_S.PUSHING, _E.PUSH_COMPLETE): _advance_to(_S.CLEANING_UP),
        (_S.PUSHING, _E.PUSH_FAILED): _fail_from(_S.PUSHING),
        (_S.CLEANING_UP, _E.CLEANUP_COMPLETE): _advance_to(_S.DONE),
        (_S.CLEANING_UP, _E.CLEANUP_FAILED): _fail_from(_S.CLEANING_UP),
        (_S.FAILED, _E.RETRY): _retry,
    }
)

# Failure event for each operational state.
FAILURE_EVENTS: Mapping[PipelineState, PipelineEventType] = MappingProxyType(
    {
        _S.VALIDATING: _E.VALIDATION_FAILED,
        _S.PREPARING: _E.PREPARATION_FAILED,
        _S.GATING: _E.GATES_FAILED,
        _S.COMMITTING: _E.COMMIT_FAILED,
        _S.MERGING: _E.MERGE_FAILED,
        _S.PUSHING: _E.PUSH_FAILED,
        _S.CLEANING_UP: _E.CLEANUP_FAILED,
    }
)


def initial_snapshot(
    *, wu_id: str | None = None, worktree_path: str | None = None, prep_passed: bool = False
) -> PipelineSnapshot:
    """Idle snapshot, optionally seeded with input context."""
    return PipelineSnapshot(
        value=PipelineState.IDLE,
        context=PipelineContext(wu_id=wu_id, worktree_path=worktree_path, prep_passed=prep_passed),
    )


def transition(snapshot: PipelineSnapshot, event: PipelineEvent) -> PipelineSnapshot:
    """Return the next snapshot, or `snapshot` itself when the event is not accepted."""
    handler = TRANSITIONS.get((snapshot.value, event.type))
    if handler is None:
        return snapshot
    outcome = handler(snapshot.context, event)
    if outcome is None:
        return snapshot
    target, context = outcome
    return PipelineSnapshot(value=target, context=context)


class CompletionMachine:
    """Mutable holder of the current snapshot for one pipeline run."""

    def __init__(
        self,
        snapshot: PipelineSnapshot | None = None,
        *,
        wu_id: str | None = None,
        worktree_path: str | None = None,
        prep_passed: bool = False,
    ) -> None:
        self._snapshot = snapshot or initial_snapshot(
            wu_id=wu_id, worktree_path=worktree_path, prep_passed=prep_passed
        )

    @classmethod
    def from_persisted(cls, payload: Mapping[str, object]) -> CompletionMachine:
        return cls(PipelineSnapshot.from_dict(payload))

    @property
    def snapshot(self) -> PipelineSnapshot:
        return self._snapshot

    @property
    def state(self) -> PipelineState:
        return self._snapshot.value

    @property
    def context(self) -> PipelineContext:
        return self._snapshot.context

    def can_accept(self, event: PipelineEvent) -> bool:
        return transition(self._snapshot, event) is not self._snapshot

    def send(self, event: PipelineEvent) -> bool:
        """Apply `event`; returns False when it was ignored."""
        next_snapshot = transition(self._snapshot, event)
        if next_snapshot is self._snapshot:
            return False
        self._snapshot = next_snapshot
        return True

    def get_persisted_snapshot(self) -> dict[str, object]:
        return self._snapshot.to_dict()


def _optional_str(payload: Mapping[str, object], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string or null (got {value!r})")
    return value
