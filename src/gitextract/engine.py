"""Worktree apply engine: replays routed commits branch by branch."""

import logging
import shutil
from pathlib import Path

from gitextract.backends import VcsBackend, create_backend
from gitextract.config import WORKTREE_DIR_NAME, ExtractConfig, load_config
from gitextract.errors import ExtractError
from gitextract.git import GitError, GitOperations
from gitextract.models import (
    ApplyOutcome,
    ApplySummary,
    Complete,
    Conflict,
    RoutingPlan,
    SessionState,
)
from gitextract.routing import build_branch_queues
from gitextract.session import SessionLock, generate_session_id


logger = logging.getLogger(__name__)


class EngineError(ExtractError):
    """Engine operation failed."""

    pass


class NothingToResumeError(EngineError):
    """No session or worktree to continue or abort."""

    pass


class DirtyWorktreeError(EngineError):
    """The conflict worktree has uncommitted changes."""

    pass


class WorktreeApplyEngine:
    """
    Replays each branch queue inside one reusable detached worktree.

    Branches are processed strictly one after another. A branch ref only
    moves once its whole queue has replayed cleanly, so a paused or aborted
    session never leaves a half-built branch behind.
    """

    def __init__(
        self,
        backend: VcsBackend,
        git_dir: str | Path,
        lock: SessionLock | None = None,
        original_cwd: str | Path | None = None,
    ):
        self.backend = backend
        self.git_dir = Path(git_dir)
        self.lock = lock or SessionLock(self.git_dir)
        self.worktree_path = self.git_dir / WORKTREE_DIR_NAME
        self.original_cwd = Path(original_cwd) if original_cwd else Path.cwd()

    def apply_plan(self, plan: RoutingPlan, base_oid: str) -> ApplyOutcome:
        """Start a fresh replay of every branch-routed commit in the plan."""
        self.lock.acquire()

        state = SessionState(
            session_id=generate_session_id(),
            worktree_path=str(self.worktree_path),
            base_oid=base_oid,
            original_cwd=str(self.original_cwd),
            branch_queues=build_branch_queues(plan),
        )
        logger.info(
            "session %s: %d branch(es) to build from base %s",
            state.session_id,
            len(state.branch_queues),
            base_oid,
        )

        self._discard_tree(self.worktree_path)
        return self._run(state, resuming=False)

    def resume_session(self, state: SessionState, allow_dirty: bool = False) -> ApplyOutcome:
        """
        Continue a paused session, finishing its in-flight replay first.

        A conflict state needs its worktree. A checkpoint written between
        branches may have none, and the next branch is then built fresh.
        """
        tree = Path(state.worktree_path)
        if state.in_conflict and not tree.exists():
            raise NothingToResumeError(
                f"saved worktree {tree} is missing; nothing to resume (use --abort to clean up)"
            )

        if tree.exists() and not allow_dirty:
            self._ensure_tree_clean(tree)

        self.lock.adopt(state)
        logger.info(
            "resuming session %s at branch index %d",
            state.session_id,
            state.current_branch_idx,
        )
        return self._run(state, resuming=True)

    def abort_session(self, state: SessionState | None) -> Path:
        """
        Cancel a paused session and remove its worktree.

        Branch refs are left untouched. Works without a state record as long
        as a leftover worktree sits at the well-known path, which is what an
        interrupted process leaves behind.
        """
        tree = Path(state.worktree_path) if state else self.worktree_path
        if state is None and not tree.exists():
            raise NothingToResumeError("no extract session to abort")

        if tree.exists():
            try:
                self.backend.abort_replay(tree)
            except GitError as e:
                logger.debug("cherry-pick --abort ignored: %s", e)
            self._discard_tree(tree)

        self.lock.release()
        return tree

    def _run(self, state: SessionState, resuming: bool) -> ApplyOutcome:
        """
        Process branch queues from state.current_branch_idx onward.

        While resuming, the state is checkpointed after every step, and a
        surviving worktree holds the commits already popped from the
        current queue. A resumed run therefore keeps that worktree
        for its first branch instead of rebuilding it.
        """
        tree = Path(state.worktree_path)
        summary = ApplySummary()
        in_conflict = resuming and state.in_conflict
        reuse_tree = resuming and tree.exists()

        while state.current_branch_idx < len(state.branch_queues):
            queue = state.branch_queues[state.current_branch_idx]
            branch = queue.branch
            applied = 0

            if in_conflict:
                if self.backend.replay_in_progress(tree):
                    logger.debug("finishing in-flight cherry-pick in %s", tree)
                    self.backend.continue_replay(tree)
                # Finished by us or by the operator, the front commit is done
                if queue.pop_front() is not None:
                    applied += 1
                in_conflict = False
                state.in_conflict = False
                self._checkpoint(state, resuming)
            elif reuse_tree:
                logger.debug("keeping worktree %s for %s", tree, branch)
            else:
                self._discard_tree(tree)
                start_point = self._start_point(branch, state.base_oid)
                logger.debug("building %s from %s", branch, start_point)
                self.backend.create_isolated_tree(tree, start_point)
            reuse_tree = False

            while queue.commits:
                oid = queue.commits[0]
                result = self.backend.replay_commit(tree, oid)
                if not result.success:
                    state.in_conflict = True
                    self.lock.persist(state)
                    logger.info("conflict replaying %s onto %s", oid, branch)
                    return Conflict(state=state, message=result.message)
                queue.pop_front()
                applied += 1
                self._checkpoint(state, resuming)

            head = self.backend.read_head(tree)
            existed = self.backend.branch_tip(branch) is not None
            self.backend.move_ref(branch, head)
            if not existed:
                summary.created_branches.append(branch)
            summary.commits_per_branch[branch] = applied
            logger.info("%s -> %s (%d commit(s))", branch, head, applied)

            self._discard_tree(tree)
            state.current_branch_idx += 1
            self._checkpoint(state, resuming)

        self.lock.release()
        return Complete(summary=summary)

    def _start_point(self, branch: str, base_oid: str) -> str:
        """Append to an existing branch, otherwise start at the base point."""
        return self.backend.branch_tip(branch) or base_oid

    def _checkpoint(self, state: SessionState, resuming: bool) -> None:
        # Fresh runs stay in memory until the first conflict
        if resuming:
            self.lock.persist(state)

    def _ensure_tree_clean(self, tree: Path) -> None:
        if self.backend.status(tree):
            raise DirtyWorktreeError(
                "worktree is not clean; resolve conflicts and stage changes before --continue"
            )

    def _discard_tree(self, tree: Path) -> None:
        """Remove a worktree, falling back to deleting the directory."""
        if tree.exists():
            try:
                self.backend.remove_tree(tree)
            except GitError as e:
                logger.debug("worktree remove failed, deleting directory: %s", e)
            if tree.exists():
                shutil.rmtree(tree, ignore_errors=True)

        # A deleted directory still blocks `worktree add` until pruned
        try:
            self.backend.prune_trees()
        except GitError as e:
            logger.debug("worktree prune failed: %s", e)


def create_engine(
    repo_path: str | Path | None = None,
    config: ExtractConfig | None = None,
    git: GitOperations | None = None,
) -> WorktreeApplyEngine:
    """Create an engine wired to the repository at ``repo_path``."""
    git = git or GitOperations(repo_path)
    config = config or load_config()
    backend = create_backend(config.backend, git.working_dir)
    return WorktreeApplyEngine(
        backend=backend,
        git_dir=git.git_dir,
        lock=SessionLock(git.git_dir),
        original_cwd=Path.cwd(),
    )
