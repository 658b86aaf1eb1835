"""Drives the completion machine through its phases with real collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from structlog import get_logger

from wuflow.config import WuflowConfig, load_wuflow_config
from wuflow.constants import GIT_STATE_DIR
from wuflow.core.git import GitAdapterFactory, create_git_adapter
from wuflow.core.micro_worktree import (
    ExecuteFn,
    ExecuteResult,
    MicroWorktreeContext,
    MicroWorktreeResult,
    MicroWorktreeTransaction,
    cleanup_orphaned_micro_worktree,
    format_retry_exhaustion_error,
    is_retry_exhaustion_error,
)
from wuflow.core.pipeline.machine import (
    FAILURE_EVENTS,
    CompletionMachine,
    PipelineEvent,
    PipelineEventType,
    PipelineSnapshot,
    PipelineState,
)
from wuflow.core.pipeline.snapshot_store import PipelineSnapshotError, PipelineSnapshotStore
from wuflow.core.state import WUStateStore

logger = get_logger(__name__)

# Collaborators receive (wu_id, worktree_path) and raise to signal failure.
Validator = Callable[[str, Path], None]
GatesRunner = Callable[[str, Path], None]
CompletionRecorder = Callable[[str], None]
TransactionFactory = Callable[[str], MicroWorktreeTransaction]

_STOP_STATES = frozenset({PipelineState.IDLE, PipelineState.DONE, PipelineState.FAILED})


@dataclass(frozen=True)
class CompletionOutcome:
    snapshot: PipelineSnapshot
    landed: MicroWorktreeResult | None = None

    @property
    def succeeded(self) -> bool:
        return self.snapshot.value is PipelineState.DONE


class CompletionPipeline:
    """Run, resume and retry the WU completion protocol.

    Each phase's outcome is turned into a machine event, and the snapshot
    is persisted after every transition so a crashed run can resume from
    the last phase it reached. Any exception raised by a collaborator
    becomes the phase's failure event; transient worktrees are cleaned up
    whenever the run stops in `failed`.

    By default the `complete` event is appended to the WU event log inside
    the micro-worktree and lands on main in the same commit as the caller's
    changes. A `record_completion` callback replaces that and is called in
    cleaningUp instead. Snapshots live under the git common dir, outside the
    tracked tree.
    """

    def __init__(
        self,
        *,
        repo_root: Path,
        execute: ExecuteFn,
        config: WuflowConfig | None = None,
        validator: Validator | None = None,
        gates_runner: GatesRunner | None = None,
        record_completion: CompletionRecorder | None = None,
        push_only: bool = False,
        operation: str = "wu-done",
        snapshot_store: PipelineSnapshotStore | None = None,
        transaction_factory: TransactionFactory | None = None,
        git_factory: GitAdapterFactory = create_git_adapter,
    ) -> None:
        self._repo_root = Path(repo_root)
        self._config = config if config is not None else load_wuflow_config(self._repo_root)
        self._git_factory = git_factory
        self._execute = execute
        self._validator = validator
        self._gates_runner = gates_runner
        self._record_completion = record_completion
        self._push_only = push_only
        self._operation = operation
        self._snapshots = snapshot_store or PipelineSnapshotStore(
            git_factory(self._repo_root).git_common_dir() / GIT_STATE_DIR
        )
        self._transaction_factory = transaction_factory or self._default_transaction
        self._transaction: MicroWorktreeTransaction | None = None
        self._landed: MicroWorktreeResult | None = None

    @property
    def snapshot_store(self) -> PipelineSnapshotStore:
        return self._snapshots

    def run(self, wu_id: str, worktree_path: Path, *, prep_passed: bool = False) -> CompletionOutcome:
        """Start the pipeline, or continue a persisted one for the same WU.

        START is only accepted from idle, so an existing snapshot is simply
        driven forward from where it stopped.
        """
        existing = self._snapshots.load(wu_id)
        machine = CompletionMachine(existing) if existing is not None else CompletionMachine()
        start = PipelineEvent(
            PipelineEventType.START, wu_id=wu_id, worktree_path=str(worktree_path), prep_passed=prep_passed
        )
        if machine.send(start):
            self._persist(machine)
        else:
            logger.info("Pipeline for %s already in %s; continuing", wu_id, machine.state.value)
        return self._drive(machine)

    def resume(self, wu_id: str) -> CompletionOutcome:
        """Continue a persisted pipeline from its recorded state."""
        machine = CompletionMachine(self._require_snapshot(wu_id))
        logger.info("Resuming pipeline for %s at %s", wu_id, machine.state.value)
        return self._drive(machine)

    def retry(self, wu_id: str) -> CompletionOutcome:
        """Send RETRY to a failed pipeline and drive it again."""
        machine = CompletionMachine(self._require_snapshot(wu_id))
        if not machine.send(PipelineEvent(PipelineEventType.RETRY)):
            logger.warning("Pipeline for %s is in %s; RETRY ignored", wu_id, machine.state.value)
            return CompletionOutcome(snapshot=machine.snapshot)
        self._persist(machine)
        logger.info("Retrying pipeline for %s (attempt %d)", wu_id, machine.context.retry_count)
        return self._drive(machine)

    def _drive(self, machine: CompletionMachine) -> CompletionOutcome:
        self._landed = None
        try:
            while machine.state not in _STOP_STATES:
                state = machine.state
                try:
                    event = self._run_phase(state, machine)
                except Exception as e:
                    logger.error("Pipeline phase %s failed for %s: %s", state.value, machine.context.wu_id, e)
                    event = PipelineEvent(
                        FAILURE_EVENTS[state], error=_describe_failure(e, machine.context.wu_id)
                    )
                if not machine.send(event):
                    raise RuntimeError(f"pipeline event {event.type.value} not accepted in {state.value}")
                self._persist(machine)
        finally:
            if machine.state is not PipelineState.DONE:
                self._discard_transaction()
        return CompletionOutcome(snapshot=machine.snapshot, landed=self._landed)

    def _run_phase(self, state: PipelineState, machine: CompletionMachine) -> PipelineEvent:
        context = machine.context
        wu_id = context.wu_id or ""
        worktree_path = Path(context.worktree_path or self._repo_root)

        if state is PipelineState.VALIDATING:
            if self._validator is not None:
                self._validator(wu_id, worktree_path)
            return PipelineEvent(PipelineEventType.VALIDATION_PASSED)

        if state is PipelineState.PREPARING:
            self._discard_transaction()
            self._transaction = self._transaction_factory(wu_id)
            self._transaction.prepare()
            return PipelineEvent(PipelineEventType.PREPARATION_COMPLETE)

        if state is PipelineState.GATING:
            if context.prep_passed:
                logger.info("Gates already passed during preparation for %s; skipping", wu_id)
                return PipelineEvent(PipelineEventType.GATES_SKIPPED)
            if self._gates_runner is not None:
                self._gates_runner(wu_id, worktree_path)
            return PipelineEvent(PipelineEventType.GATES_PASSED)

        if state is PipelineState.COMMITTING:
            transaction = self._transaction
            if transaction is None or transaction.phase != "prepared":
                self._discard_transaction()
                transaction = self._transaction = self._transaction_factory(wu_id)
                transaction.prepare()
            transaction.apply(self._completion_execute(wu_id))
            transaction.commit()
            return PipelineEvent(PipelineEventType.COMMIT_COMPLETE)

        if state is PipelineState.MERGING:
            self._committed_transaction(wu_id).merge()
            return PipelineEvent(PipelineEventType.MERGE_COMPLETE)

        if state is PipelineState.PUSHING:
            transaction = self._committed_transaction(wu_id)
            if transaction.phase == "committed":
                # Resumed after a crash: the fast-forward is a no-op when it already landed.
                transaction.merge()
            self._landed = transaction.push()
            return PipelineEvent(PipelineEventType.PUSH_COMPLETE)

        if state is PipelineState.CLEANING_UP:
            if self._transaction is not None:
                self._transaction.cleanup()
                self._transaction = None
            else:
                orphan = self._transaction_factory(wu_id)
                cleanup_orphaned_micro_worktree(orphan.main_git, orphan.temp_branch, orphan.log_prefix)
            if self._record_completion is not None:
                self._record_completion(wu_id)
            return PipelineEvent(PipelineEventType.CLEANUP_COMPLETE)

        raise RuntimeError(f"no phase runner for state {state.value}")

    def _committed_transaction(self, wu_id: str) -> MicroWorktreeTransaction:
        if self._transaction is not None and self._transaction.phase in ("committed", "merged"):
            return self._transaction
        self._discard_transaction()
        transaction = self._transaction = self._transaction_factory(wu_id)
        transaction.reattach()
        return transaction

    def _discard_transaction(self) -> None:
        if self._transaction is None:
            return
        try:
            self._transaction.cleanup()
        finally:
            self._transaction = None

    def _persist(self, machine: CompletionMachine) -> None:
        wu_id = machine.context.wu_id
        if wu_id is None:
            return
        self._snapshots.save(wu_id, machine.snapshot)

    def _require_snapshot(self, wu_id: str) -> PipelineSnapshot:
        snapshot = self._snapshots.load(wu_id)
        if snapshot is None:
            raise PipelineSnapshotError(f"no persisted pipeline snapshot for {wu_id}")
        return snapshot

    def _default_transaction(self, wu_id: str) -> MicroWorktreeTransaction:
        return MicroWorktreeTransaction(
            operation=self._operation,
            wu_id=wu_id,
            repo_root=self._repo_root,
            push_only=self._push_only,
            config=self._config,
            git_factory=self._git_factory,
        )

    def _completion_execute(self, wu_id: str) -> ExecuteFn:
        if self._record_completion is not None:
            return self._execute

        def execute(context: MicroWorktreeContext) -> ExecuteResult:
            result = self._execute(context)
            files = list(result.files)
            staged = self._stage_complete_event(wu_id, context.worktree_path)
            if staged is not None and staged not in files:
                files.append(staged)
            return ExecuteResult(commit_message=result.commit_message, files=tuple(files))

        return execute

    def _stage_complete_event(self, wu_id: str, worktree_path: Path) -> str | None:
        """Append `complete` to the worktree's copy of the event log; returns its repo-relative path."""
        store = WUStateStore(worktree_path / self._config.state.dir)
        store.load()
        current = store.get_wu_state(wu_id)
        if current is not None and current.status == "done":
            logger.info("WU %s already recorded as done", wu_id)
            return None
        event = store.create_complete_event(wu_id)
        store.event_log.append(event)
        logger.info("Staged complete event for %s in %s", wu_id, store.event_log.path)
        return store.event_log.path.relative_to(worktree_path).as_posix()


def _describe_failure(error: Exception, wu_id: str | None) -> str:
    if is_retry_exhaustion_error(error):
        return format_retry_exhaustion_error(error, command=f"CompletionPipeline.retry({wu_id!r})")
    return str(error) or type(error).__name__
