"""WU completion pipeline: state machine, snapshots and runner."""

from wuflow.core.pipeline.machine import (
    FAILURE_EVENTS,
    TRANSITIONS,
    CompletionMachine,
    PipelineContext,
    PipelineEvent,
    PipelineEventType,
    PipelineSnapshot,
    PipelineState,
    initial_snapshot,
    transition,
)
from wuflow.core.pipeline.runner import CompletionOutcome, CompletionPipeline
from wuflow.core.pipeline.snapshot_store import PipelineSnapshotError, PipelineSnapshotStore

__all__ = [
    "FAILURE_EVENTS",
    "TRANSITIONS",
    "CompletionMachine",
    "CompletionOutcome",
    "CompletionPipeline",
    "PipelineContext",
    "PipelineEvent",
    "PipelineEventType",
    "PipelineSnapshot",
    "PipelineSnapshotError",
    "PipelineSnapshotStore",
    "PipelineState",
    "initial_snapshot",
    "transition",
]
