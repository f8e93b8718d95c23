"""End-to-end tests for the worktree apply engine, run against both backends."""

import shutil
from pathlib import Path

import pytest

from gitextract.engine import DirtyWorktreeError, NothingToResumeError, WorktreeApplyEngine
from gitextract.git import GitError
from gitextract.models import Assignment, Complete, Conflict, Destination, RoutingPlan
from gitextract.session import SessionExistsError, load_state, state_path
from tests.git_helpers import branch_exists, commit_file, git, subjects


def plan_for(routes: list[tuple[str, Destination]], order: list[str]) -> RoutingPlan:
    return RoutingPlan(
        assignments=tuple(Assignment(oid=oid, destination=dest) for oid, dest in routes),
        commit_order=tuple(order),
    )


def base_of(repo: Path) -> str:
    return git(repo, "rev-parse", "HEAD")


def worktree_listed(repo: Path, tree: Path) -> bool:
    return str(tree) in git(repo, "worktree", "list", "--porcelain")


def test_routes_commits_to_new_branches(engine: WorktreeApplyEngine, repo: Path):
    base = base_of(repo)
    c1 = commit_file(repo, "a.txt", "a\n", "c1")
    c2 = commit_file(repo, "b.txt", "b\n", "c2")
    c3 = commit_file(repo, "c.txt", "c\n", "c3")
    head_before = git(repo, "rev-parse", "HEAD")

    plan = plan_for(
        [
            (c1, Destination.named("feature")),
            (c2, Destination.originating()),
            (c3, Destination.named("fix")),
        ],
        [c1, c2, c3],
    )
    outcome = engine.apply_plan(plan, base)

    assert isinstance(outcome, Complete)
    assert outcome.summary.created_branches == ["feature", "fix"]
    assert outcome.summary.commits_per_branch == {"feature": 1, "fix": 1}
    assert subjects(repo, f"{base}..feature") == ["c1"]
    assert subjects(repo, f"{base}..fix") == ["c3"]
    assert git(repo, "rev-parse", "HEAD") == head_before
    assert git(repo, "symbolic-ref", "--short", "HEAD") == "main"
    assert not engine.worktree_path.exists()
    assert not worktree_listed(repo, engine.worktree_path)
    assert not state_path(repo / ".git").exists()


def test_queue_replays_in_chronological_order(engine: WorktreeApplyEngine, repo: Path):
    base = base_of(repo)
    c1 = commit_file(repo, "a.txt", "a\n", "c1")
    c2 = commit_file(repo, "a.txt", "a\nb\n", "c2")

    # Listed newest first; c2 only applies on top of c1
    plan = plan_for(
        [(c2, Destination.named("feature")), (c1, Destination.named("feature"))],
        [c1, c2],
    )
    outcome = engine.apply_plan(plan, base)

    assert isinstance(outcome, Complete)
    assert subjects(repo, f"{base}..feature") == ["c2", "c1"]


def test_appends_to_existing_branch(engine: WorktreeApplyEngine, repo: Path):
    base = base_of(repo)
    git(repo, "checkout", "-q", "-b", "feature")
    commit_file(repo, "f.txt", "f\n", "f1")
    git(repo, "checkout", "-q", "main")
    c1 = commit_file(repo, "a.txt", "a\n", "c1")

    outcome = engine.apply_plan(plan_for([(c1, Destination.named("feature"))], [c1]), base)

    assert isinstance(outcome, Complete)
    assert outcome.summary.created_branches == []
    assert subjects(repo, f"{base}..feature") == ["c1", "f1"]


def test_drop_and_current_leave_no_branches(engine: WorktreeApplyEngine, repo: Path):
    base = base_of(repo)
    c1 = commit_file(repo, "a.txt", "a\n", "c1")
    c2 = commit_file(repo, "b.txt", "b\n", "c2")

    plan = plan_for([(c1, Destination.drop()), (c2, Destination.originating())], [c1, c2])
    outcome = engine.apply_plan(plan, base)

    assert isinstance(outcome, Complete)
    assert outcome.summary.created_branches == []
    assert outcome.summary.total_commits == 0
    assert git(repo, "for-each-ref", "--format=%(refname:short)", "refs/heads") == "main"


@pytest.fixture
def conflicted_existing(engine: WorktreeApplyEngine, repo: Path):
    """Pause on the second commit routed to an existing ``feature`` branch."""
    base = base_of(repo)
    git(repo, "checkout", "-q", "-b", "feature")
    commit_file(repo, "file.txt", "feature\n", "feature change")
    git(repo, "checkout", "-q", "main")
    c1 = commit_file(repo, "a.txt", "a\n", "c1")
    c2 = commit_file(repo, "file.txt", "work\n", "c2")

    plan = plan_for(
        [(c1, Destination.named("feature")), (c2, Destination.named("feature"))],
        [c1, c2],
    )
    outcome = engine.apply_plan(plan, base)
    return outcome, c2


def test_conflict_pauses_and_persists(engine: WorktreeApplyEngine, repo: Path, conflicted_existing):
    outcome, c2 = conflicted_existing
    feature_before = git(repo, "rev-parse", "feature")

    assert isinstance(outcome, Conflict)
    assert outcome.state.in_conflict is True
    assert outcome.state.current_branch_idx == 0
    assert outcome.state.branch_queues[0].commits == [c2]
    assert engine.worktree_path.exists()

    saved = load_state(state_path(repo / ".git"))
    assert saved == outcome.state
    # Nothing moves until the queue drains
    assert git(repo, "rev-parse", "feature") == feature_before


def test_resume_after_operator_continues(engine: WorktreeApplyEngine, repo: Path, conflicted_existing):
    tree = engine.worktree_path
    (tree / "file.txt").write_text("resolved\n")
    git(tree, "add", "file.txt")
    git(tree, "cherry-pick", "--continue")
    resolved_head = git(tree, "rev-parse", "HEAD")

    state = load_state(state_path(repo / ".git"))
    outcome = engine.resume_session(state)

    assert isinstance(outcome, Complete)
    assert outcome.summary.created_branches == []
    assert outcome.summary.commits_per_branch == {"feature": 1}
    assert git(repo, "rev-parse", "feature") == resolved_head
    assert (repo / ".git" / "extract-state.json").exists() is False
    assert not tree.exists()


def test_resume_finishes_in_flight_pick(engine: WorktreeApplyEngine, repo: Path, conflicted_existing):
    tree = engine.worktree_path
    (tree / "file.txt").write_text("resolved\n")
    git(tree, "add", "file.txt")
    state = load_state(state_path(repo / ".git"))

    with pytest.raises(DirtyWorktreeError):
        engine.resume_session(state)

    outcome = engine.resume_session(state, allow_dirty=True)

    assert isinstance(outcome, Complete)
    assert subjects(repo, "feature~2..feature") == ["c2", "c1"]
    assert git(repo, "show", "feature:file.txt") == "resolved"


def test_second_plan_is_refused_while_paused(
    engine: WorktreeApplyEngine, repo: Path, conflicted_existing
):
    other = WorktreeApplyEngine(backend=engine.backend, git_dir=repo / ".git", original_cwd=repo)
    c3 = commit_file(repo, "c.txt", "c\n", "c3")

    with pytest.raises(SessionExistsError):
        other.apply_plan(plan_for([(c3, Destination.named("other"))], [c3]), base_of(repo))


def test_resume_without_worktree(engine: WorktreeApplyEngine, repo: Path, conflicted_existing):
    shutil.rmtree(engine.worktree_path)
    state = load_state(state_path(repo / ".git"))

    with pytest.raises(NothingToResumeError):
        engine.resume_session(state)

    engine.abort_session(state)
    assert not state_path(repo / ".git").exists()


def test_abort_leaves_no_trace(engine: WorktreeApplyEngine, repo: Path):
    base = base_of(repo)
    commit_file(repo, "file.txt", "main\n", "main-change")
    c2 = commit_file(repo, "file.txt", "work\n", "c2")

    outcome = engine.apply_plan(plan_for([(c2, Destination.named("feature"))], [c2]), base)
    assert isinstance(outcome, Conflict)

    tree = engine.abort_session(load_state(state_path(repo / ".git")))

    assert tree == engine.worktree_path
    assert not tree.exists()
    assert not worktree_listed(repo, tree)
    assert not branch_exists(repo, "feature")
    assert not state_path(repo / ".git").exists()


def test_abort_cleans_orphaned_worktree(engine: WorktreeApplyEngine, repo: Path):
    engine.backend.create_isolated_tree(engine.worktree_path, "HEAD")

    engine.abort_session(None)

    assert not engine.worktree_path.exists()
    assert not worktree_listed(repo, engine.worktree_path)


def test_abort_with_nothing_to_abort(engine: WorktreeApplyEngine):
    with pytest.raises(NothingToResumeError):
        engine.abort_session(None)


def test_stale_worktree_is_replaced(engine: WorktreeApplyEngine, repo: Path):
    base = base_of(repo)
    engine.backend.create_isolated_tree(engine.worktree_path, "HEAD")
    c1 = commit_file(repo, "a.txt", "a\n", "c1")

    outcome = engine.apply_plan(plan_for([(c1, Destination.named("feature"))], [c1]), base)

    assert isinstance(outcome, Complete)
    assert subjects(repo, f"{base}..feature") == ["c1"]


def fail_once(monkeypatch, backend, method: str) -> None:
    """Make one backend call raise GitError, as an interrupted run would leave things."""
    real = getattr(backend, method)
    calls = []

    def wrapper(*args, **kwargs):
        if not calls:
            calls.append(args)
            raise GitError(f"{method} interrupted")
        return real(*args, **kwargs)

    monkeypatch.setattr(backend, method, wrapper)


def resolve_in_tree(tree: Path, content: str = "resolved\n") -> None:
    (tree / "file.txt").write_text(content)
    git(tree, "add", "file.txt")
    git(tree, "cherry-pick", "--continue")


def fresh_engine(engine: WorktreeApplyEngine, repo: Path) -> WorktreeApplyEngine:
    return WorktreeApplyEngine(backend=engine.backend, git_dir=repo / ".git", original_cwd=repo)


def test_interrupted_resume_keeps_resolved_commit(
    engine: WorktreeApplyEngine, repo: Path, monkeypatch
):
    base = base_of(repo)
    git(repo, "checkout", "-q", "-b", "feature")
    commit_file(repo, "file.txt", "feature\n", "feature change")
    git(repo, "checkout", "-q", "main")
    c1 = commit_file(repo, "file.txt", "work\n", "c1")
    c2 = commit_file(repo, "a.txt", "a\n", "c2")

    plan = plan_for(
        [(c1, Destination.named("feature")), (c2, Destination.named("feature"))],
        [c1, c2],
    )
    outcome = engine.apply_plan(plan, base)
    assert isinstance(outcome, Conflict)
    assert outcome.state.branch_queues[0].commits == [c1, c2]

    resolve_in_tree(engine.worktree_path)
    fail_once(monkeypatch, engine.backend, "read_head")

    with pytest.raises(GitError, match="read_head interrupted"):
        engine.resume_session(load_state(state_path(repo / ".git")))

    saved = load_state(state_path(repo / ".git"))
    assert saved.in_conflict is False
    assert saved.branch_queues[0].commits == []
    assert engine.worktree_path.exists()

    outcome = fresh_engine(engine, repo).resume_session(saved)

    assert isinstance(outcome, Complete)
    assert subjects(repo, f"{base}..feature") == ["c2", "c1", "feature change"]
    assert git(repo, "show", "feature:file.txt") == "resolved"
    assert not state_path(repo / ".git").exists()


def test_resume_interrupted_between_branches(
    engine: WorktreeApplyEngine, repo: Path, monkeypatch
):
    base = base_of(repo)
    git(repo, "checkout", "-q", "-b", "feature")
    commit_file(repo, "file.txt", "feature\n", "feature change")
    git(repo, "checkout", "-q", "main")
    c1 = commit_file(repo, "file.txt", "work\n", "c1")
    c2 = commit_file(repo, "a.txt", "a\n", "c2")

    plan = plan_for(
        [(c1, Destination.named("feature")), (c2, Destination.named("fix"))],
        [c1, c2],
    )
    assert isinstance(engine.apply_plan(plan, base), Conflict)
    resolve_in_tree(engine.worktree_path)
    fail_once(monkeypatch, engine.backend, "create_isolated_tree")

    with pytest.raises(GitError, match="create_isolated_tree interrupted"):
        engine.resume_session(load_state(state_path(repo / ".git")))

    saved = load_state(state_path(repo / ".git"))
    assert saved.current_branch_idx == 1
    assert saved.in_conflict is False
    assert not engine.worktree_path.exists()
    feature_tip = git(repo, "rev-parse", "feature")

    outcome = fresh_engine(engine, repo).resume_session(saved)

    assert isinstance(outcome, Complete)
    assert outcome.summary.created_branches == ["fix"]
    assert subjects(repo, f"{base}..fix") == ["c2"]
    assert git(repo, "rev-parse", "feature") == feature_tip


def test_conflict_on_second_branch(engine: WorktreeApplyEngine, repo: Path):
    base = base_of(repo)
    git(repo, "checkout", "-q", "-b", "fix")
    commit_file(repo, "file.txt", "fix\n", "fix change")
    git(repo, "checkout", "-q", "main")
    c1 = commit_file(repo, "a.txt", "a\n", "c1")
    c2 = commit_file(repo, "file.txt", "work\n", "c2")

    plan = plan_for(
        [(c1, Destination.named("feature")), (c2, Destination.named("fix"))],
        [c1, c2],
    )
    outcome = engine.apply_plan(plan, base)

    assert isinstance(outcome, Conflict)
    assert outcome.state.current_branch_idx == 1
    assert outcome.state.branch_queues[0].commits == []
    assert outcome.state.branch_queues[1].commits == [c2]
    assert load_state(state_path(repo / ".git")) == outcome.state
    # The first branch finished before the pause
    assert subjects(repo, f"{base}..feature") == ["c1"]
    feature_tip = git(repo, "rev-parse", "feature")

    resolve_in_tree(engine.worktree_path)
    outcome = fresh_engine(engine, repo).resume_session(load_state(state_path(repo / ".git")))

    assert isinstance(outcome, Complete)
    assert outcome.summary.commits_per_branch == {"fix": 1}
    assert subjects(repo, f"{base}..fix") == ["c2", "fix change"]
    assert git(repo, "rev-parse", "feature") == feature_tip
    assert not state_path(repo / ".git").exists()
