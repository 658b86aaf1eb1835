"""Git capability consumed by the micro-worktree primitive."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol, Sequence, cast

from git import Repo
from git.exc import GitCommandError
from structlog import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class WorktreeEntry:
    """One record from `git worktree list --porcelain`."""

    path: str
    head: str | None
    branch: str | None
    detached: bool = False


class GitAdapter(Protocol):
    """Operations the transaction needs from one checkout.

    Every failing call raises `git.exc.GitCommandError`.
    """

    @property
    def working_dir(self) -> Path: ...

    def fetch(self, remote: str, branch: str) -> None: ...

    def merge(self, ref: str, *, ff_only: bool = True) -> None: ...

    def push(self, remote: str, branch: str) -> None: ...

    def push_refspec(self, remote: str, local_ref: str, remote_ref: str) -> None: ...

    def rebase(self, onto: str) -> None: ...

    def create_branch_no_checkout(self, name: str, base_ref: str) -> None: ...

    def worktree_add_existing(self, path: Path, branch: str) -> None: ...

    def worktree_remove(self, path: Path, *, force: bool = True) -> None: ...

    def worktree_prune(self) -> None: ...

    def worktree_list(self) -> str: ...

    def branch_exists(self, name: str) -> bool: ...

    def delete_branch(self, name: str, *, force: bool = True) -> None: ...

    def add_with_deletions(self, files: Sequence[str]) -> None: ...

    def commit(self, message: str) -> None: ...

    def rev_parse(self, ref: str) -> str: ...

    def commit_message(self, ref: str) -> str: ...

    def commit_files(self, ref: str) -> list[str]: ...

    def current_branch(self) -> str | None: ...

    def fast_forward_branch(self, branch: str, ref: str) -> None: ...

    def move_branch(self, branch: str, ref: str) -> None: ...

    def git_common_dir(self) -> Path: ...

    def status(self) -> str: ...


GitAdapterFactory = Callable[[Path], GitAdapter]


class GitPythonAdapter:
    """GitAdapter over a GitPython `Repo`."""

    def __init__(self, path: Path) -> None:
        self._repo = Repo(path)
        self._path = Path(path)

    @property
    def working_dir(self) -> Path:
        return self._path

    def fetch(self, remote: str, branch: str) -> None:
        self._repo.git.fetch(remote, branch)

    def merge(self, ref: str, *, ff_only: bool = True) -> None:
        if ff_only:
            self._repo.git.merge("--ff-only", ref)
        else:
            self._repo.git.merge(ref)

    def push(self, remote: str, branch: str) -> None:
        self._repo.git.push(remote, branch)

    def push_refspec(self, remote: str, local_ref: str, remote_ref: str) -> None:
        self._repo.git.push(remote, f"{local_ref}:{remote_ref}")

    def rebase(self, onto: str) -> None:
        """Rebase the checked-out branch; an interrupted rebase is aborted before re-raising."""
        try:
            self._repo.git.rebase(onto)
        except GitCommandError:
            try:
                self._repo.git.rebase("--abort")
            except GitCommandError as abort_exc:
                logger.warning("rebase --abort failed in %s: %s", self._path, abort_exc)
            raise

    def create_branch_no_checkout(self, name: str, base_ref: str) -> None:
        self._repo.git.branch(name, base_ref)

    def worktree_add_existing(self, path: Path, branch: str) -> None:
        self._repo.git.worktree("add", str(path), branch)

    def worktree_remove(self, path: Path, *, force: bool = True) -> None:
        if force:
            self._repo.git.worktree("remove", "--force", str(path))
        else:
            self._repo.git.worktree("remove", str(path))

    def worktree_prune(self) -> None:
        self._repo.git.worktree("prune")

    def worktree_list(self) -> str:
        return cast(str, self._repo.git.worktree("list", "--porcelain"))

    def branch_exists(self, name: str) -> bool:
        try:
            self._repo.git.rev_parse("--verify", "--quiet", f"refs/heads/{name}")
        except GitCommandError:
            return False
        return True

    def delete_branch(self, name: str, *, force: bool = True) -> None:
        self._repo.git.branch("-D" if force else "-d", name)

    def add_with_deletions(self, files: Sequence[str]) -> None:
        """Stage exactly `files`, including removals."""
        if not files:
            return
        self._repo.git.add("-A", "--", *files)

    def commit(self, message: str) -> None:
        self._repo.git.commit("-m", message)

    def rev_parse(self, ref: str) -> str:
        return cast(str, self._repo.git.rev_parse(ref)).strip()

    def commit_message(self, ref: str) -> str:
        return cast(str, self._repo.git.log("-1", "--format=%B", ref)).strip()

    def commit_files(self, ref: str) -> list[str]:
        """Paths touched by the commit at `ref`, deletions included."""
        output = cast(str, self._repo.git.diff_tree("--no-commit-id", "--name-only", "-r", "--root", ref))
        return [line for line in output.splitlines() if line.strip()]

    def current_branch(self) -> str | None:
        try:
            name = cast(str, self._repo.git.symbolic_ref("--quiet", "--short", "HEAD")).strip()
        except GitCommandError:
            return None
        return name or None

    def fast_forward_branch(self, branch: str, ref: str) -> None:
        """Advance `branch` to `ref`, refusing anything but a fast-forward.

        Merges when `branch` is checked out here; otherwise updates the ref
        without touching any working tree.
        """
        if self.current_branch() == branch:
            self._repo.git.merge("--ff-only", ref)
        else:
            self._repo.git.fetch(".", f"{ref}:{branch}")

    def move_branch(self, branch: str, ref: str) -> None:
        """Point `branch` at `ref` without discarding uncommitted work.

        Uses `reset --keep` on a checked-out branch, which refuses when local
        changes would be overwritten.
        """
        if self.current_branch() == branch:
            self._repo.git.reset("--keep", ref)
        else:
            self._repo.git.branch("-f", branch, ref)

    def git_common_dir(self) -> Path:
        raw = cast(str, self._repo.git.rev_parse("--git-common-dir")).strip()
        common = Path(raw)
        if not common.is_absolute():
            common = self._path / common
        return common.resolve()

    def status(self) -> str:
        return cast(str, self._repo.git.status("--porcelain"))


def create_git_adapter(path: Path) -> GitAdapter:
    return GitPythonAdapter(path)


def parse_worktree_porcelain(output: str) -> list[WorktreeEntry]:
    """Parse `git worktree list --porcelain` into entries."""
    entries: list[WorktreeEntry] = []
    path: str | None = None
    head: str | None = None
    branch: str | None = None
    detached = False

    def _flush() -> None:
        if path is not None:
            entries.append(WorktreeEntry(path=path, head=head, branch=branch, detached=detached))

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            _flush()
            path, head, branch, detached = None, None, None, False
            continue
        if line.startswith("worktree "):
            _flush()
            path, head, branch, detached = line[len("worktree ") :], None, None, False
        elif line.startswith("HEAD "):
            head = line[len("HEAD ") :]
        elif line.startswith("branch "):
            ref = line[len("branch ") :]
            branch = ref[len("refs/heads/") :] if ref.startswith("refs/heads/") else ref
        elif line == "detached":
            detached = True
    _flush()
    return entries


def find_worktree_by_branch(output: str, branch: str) -> WorktreeEntry | None:
    for entry in parse_worktree_porcelain(output):
        if entry.branch == branch:
            return entry
    return None
