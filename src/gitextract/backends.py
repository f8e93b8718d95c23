"""Version-control backends for the apply engine.

The engine only talks to ``VcsBackend``. Two implementations exist:

- ``GitPythonBackend``: GitPython objects where the library models the
  operation (refs, HEAD, worktree git dirs), its command wrapper otherwise
- ``SubprocessBackend``: plain ``git -C <path> ...`` invocations

Every method except ``replay_commit`` raises ``GitError`` on failure.
``replay_commit`` reports failure in its result because a conflict is an
expected outcome, not an error.
"""

import logging
import os
import re
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from git import Git, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from gitextract.config import BACKEND_GITPYTHON, BACKEND_SUBPROCESS, ConfigError
from gitextract.git import GitError


logger = logging.getLogger(__name__)

OID_PATTERN = re.compile(r"^(?:[0-9a-f]{40}|[0-9a-f]{64})$")

# Finishing a cherry-pick must never wait on an interactive editor
NON_INTERACTIVE_ENV = {"GIT_EDITOR": "true"}

REFLOG_MESSAGE = "git-extract update"


@dataclass
class ReplayResult:
    """Outcome of replaying one commit."""

    success: bool
    message: str = ""


def parse_oid(text: str) -> str:
    """Validate a full hex object id as printed by git."""
    oid = text.strip()
    if not OID_PATTERN.match(oid):
        raise GitError(f"cannot parse resulting HEAD: {oid!r}")
    return oid


class VcsBackend(ABC):
    """Capability interface over the version-control tool."""

    def __init__(self, repo_path: str | Path):
        self.repo_path = Path(repo_path)

    @abstractmethod
    def create_isolated_tree(self, path: Path, start_point: str) -> None:
        """Add a detached worktree at ``path`` checked out at ``start_point``."""
        ...

    @abstractmethod
    def remove_tree(self, path: Path) -> None:
        """Forcibly remove the worktree at ``path``."""
        ...

    @abstractmethod
    def prune_trees(self) -> None:
        """Drop worktree metadata whose directories no longer exist."""
        ...

    @abstractmethod
    def replay_commit(self, tree: Path, oid: str) -> ReplayResult:
        """Cherry-pick ``oid`` onto the worktree's HEAD."""
        ...

    @abstractmethod
    def replay_in_progress(self, tree: Path) -> bool:
        """Whether the worktree has an unfinished cherry-pick."""
        ...

    @abstractmethod
    def continue_replay(self, tree: Path) -> None:
        """Commit the resolved cherry-pick."""
        ...

    @abstractmethod
    def abort_replay(self, tree: Path) -> None:
        """Cancel the in-flight cherry-pick."""
        ...

    @abstractmethod
    def read_head(self, tree: Path) -> str:
        """Full commit id of the worktree's HEAD."""
        ...

    @abstractmethod
    def branch_tip(self, branch: str) -> str | None:
        """Commit id a local branch points at, or None if it does not exist."""
        ...

    @abstractmethod
    def move_ref(self, branch: str, oid: str) -> None:
        """Create or force-update ``refs/heads/<branch>`` to ``oid``."""
        ...

    @abstractmethod
    def status(self, tree: Path) -> list[str]:
        """Porcelain status lines for the worktree; empty means clean."""
        ...


class GitPythonBackend(VcsBackend):
    """Backend built on GitPython."""

    def __init__(self, repo_path: str | Path):
        super().__init__(repo_path)
        try:
            self.repo = Repo(self.repo_path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise GitError(f"Not a git repository: {self.repo_path}")

    def _open_tree(self, tree: Path) -> Repo:
        try:
            return Repo(tree)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise GitError(f"not a worktree: {tree}")

    def create_isolated_tree(self, path: Path, start_point: str) -> None:
        try:
            self.repo.git.worktree("add", "--detach", str(path), start_point)
        except GitCommandError as e:
            raise GitError(f"Failed to create worktree at {path}: {e.stderr.strip()}")

    def remove_tree(self, path: Path) -> None:
        try:
            self.repo.git.worktree("remove", "--force", str(path))
        except GitCommandError as e:
            raise GitError(f"Failed to remove worktree {path}: {e.stderr.strip()}")

    def prune_trees(self) -> None:
        try:
            self.repo.git.worktree("prune")
        except GitCommandError as e:
            raise GitError(f"Failed to prune worktrees: {e.stderr.strip()}")

    def replay_commit(self, tree: Path, oid: str) -> ReplayResult:
        status, stdout, stderr = Git(str(tree)).execute(
            ["git", "cherry-pick", oid],
            with_extended_output=True,
            with_exceptions=False,
        )
        if status == 0:
            return ReplayResult(success=True)
        return ReplayResult(success=False, message=(stderr or stdout).strip())

    def replay_in_progress(self, tree: Path) -> bool:
        with self._open_tree(tree) as tree_repo:
            return (Path(tree_repo.git_dir) / "CHERRY_PICK_HEAD").exists()

    def continue_replay(self, tree: Path) -> None:
        try:
            Git(str(tree)).cherry_pick("--continue", env=NON_INTERACTIVE_ENV)
        except GitCommandError as e:
            raise GitError(f"Failed to continue cherry-pick: {e.stderr.strip()}")

    def abort_replay(self, tree: Path) -> None:
        try:
            Git(str(tree)).cherry_pick("--abort")
        except GitCommandError as e:
            raise GitError(f"Failed to abort cherry-pick: {e.stderr.strip()}")

    def read_head(self, tree: Path) -> str:
        with self._open_tree(tree) as tree_repo:
            try:
                hexsha = tree_repo.head.commit.hexsha
            except ValueError as e:
                raise GitError(f"cannot read worktree HEAD: {e}")
        return parse_oid(hexsha)

    def branch_tip(self, branch: str) -> str | None:
        for head in self.repo.heads:
            if head.name == branch:
                try:
                    return head.commit.hexsha
                except ValueError as e:
                    raise GitError(f"cannot read branch {branch}: {e}")
        return None

    def move_ref(self, branch: str, oid: str) -> None:
        try:
            self.repo.create_head(branch, oid, force=True, logmsg=REFLOG_MESSAGE)
        except (GitCommandError, ValueError, OSError) as e:
            raise GitError(f"Failed to update branch {branch}: {e}")

    def status(self, tree: Path) -> list[str]:
        try:
            output = Git(str(tree)).status("--porcelain")
        except GitCommandError as e:
            raise GitError(f"Failed to read worktree status: {e.stderr.strip()}")
        return [line for line in output.splitlines() if line.strip()]


class SubprocessBackend(VcsBackend):
    """Backend that shells out to the git executable."""

    def _run(
        self,
        cwd: Path,
        *args: str,
        env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess:
        run_env = None
        if env:
            run_env = {**os.environ, **env}
        logger.debug("git -C %s %s", cwd, " ".join(args))
        return subprocess.run(
            ["git", "-C", str(cwd), *args],
            capture_output=True,
            text=True,
            env=run_env,
        )

    def _check(self, cwd: Path, *args: str, env: dict[str, str] | None = None) -> str:
        result = self._run(cwd, *args, env=env)
        if result.returncode != 0:
            raise GitError(f"git {args[0]} failed: {result.stderr.strip()}")
        return result.stdout

    def create_isolated_tree(self, path: Path, start_point: str) -> None:
        self._check(self.repo_path, "worktree", "add", "--detach", str(path), start_point)

    def remove_tree(self, path: Path) -> None:
        self._check(self.repo_path, "worktree", "remove", "--force", str(path))

    def prune_trees(self) -> None:
        self._check(self.repo_path, "worktree", "prune")

    def replay_commit(self, tree: Path, oid: str) -> ReplayResult:
        result = self._run(tree, "cherry-pick", oid)
        if result.returncode == 0:
            return ReplayResult(success=True)
        return ReplayResult(success=False, message=(result.stderr or result.stdout).strip())

    def replay_in_progress(self, tree: Path) -> bool:
        marker = Path(self._check(tree, "rev-parse", "--git-path", "CHERRY_PICK_HEAD").strip())
        if not marker.is_absolute():
            marker = tree / marker
        return marker.exists()

    def continue_replay(self, tree: Path) -> None:
        self._check(tree, "cherry-pick", "--continue", env=NON_INTERACTIVE_ENV)

    def abort_replay(self, tree: Path) -> None:
        self._check(tree, "cherry-pick", "--abort")

    def read_head(self, tree: Path) -> str:
        return parse_oid(self._check(tree, "rev-parse", "HEAD"))

    def branch_tip(self, branch: str) -> str | None:
        result = self._run(
            self.repo_path, "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}^{{commit}}"
        )
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def move_ref(self, branch: str, oid: str) -> None:
        self._check(self.repo_path, "update-ref", "-m", REFLOG_MESSAGE, f"refs/heads/{branch}", oid)

    def status(self, tree: Path) -> list[str]:
        output = self._check(tree, "status", "--porcelain")
        return [line for line in output.splitlines() if line.strip()]


BACKENDS: dict[str, type[VcsBackend]] = {
    BACKEND_GITPYTHON: GitPythonBackend,
    BACKEND_SUBPROCESS: SubprocessBackend,
}


def create_backend(kind: str, repo_path: str | Path) -> VcsBackend:
    """Instantiate the backend registered under ``kind``."""
    try:
        backend_cls = BACKENDS[kind]
    except KeyError:
        raise ConfigError(f"unknown backend {kind!r}; choose one of {', '.join(BACKENDS)}")
    return backend_cls(repo_path)
