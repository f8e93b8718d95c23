"""Data models for git-extract."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union


STATE_VERSION = 1


class DestinationKind(str, Enum):
    """Where a routed commit ends up."""

    BRANCH = "branch"
    CURRENT = "current"  # Stays on the originating branch
    DROP = "drop"


@dataclass(frozen=True)
class Commit:
    """A candidate commit from the source branch."""

    oid: str
    short: str
    summary: str


@dataclass(frozen=True)
class TargetDef:
    """A numeric alias for a destination branch."""

    alias: int
    branch: str


@dataclass
class TargetDefs:
    """Ordered target definitions, aliases assigned in first-seen order."""

    targets: list[TargetDef] = field(default_factory=list)

    def alias_map(self) -> dict[int, str]:
        return {t.alias: t.branch for t in self.targets}

    @property
    def names(self) -> list[str]:
        return [t.branch for t in self.targets]

    def __len__(self) -> int:
        return len(self.targets)


@dataclass(frozen=True)
class Destination:
    """Closed variant: a named branch, the originating branch, or drop."""

    kind: DestinationKind
    branch: str | None = None

    @classmethod
    def named(cls, branch: str) -> "Destination":
        return cls(DestinationKind.BRANCH, branch)

    @classmethod
    def originating(cls) -> "Destination":
        return cls(DestinationKind.CURRENT)

    @classmethod
    def drop(cls) -> "Destination":
        return cls(DestinationKind.DROP)

    @property
    def is_branch(self) -> bool:
        return self.kind == DestinationKind.BRANCH

    @property
    def label(self) -> str:
        """Display label used in summaries."""
        if self.kind == DestinationKind.BRANCH:
            return self.branch or ""
        return self.kind.value


@dataclass(frozen=True)
class Assignment:
    """One commit routed to one destination."""

    oid: str
    destination: Destination


@dataclass(frozen=True)
class RoutingPlan:
    """Validated assignments in declaration order."""

    assignments: tuple[Assignment, ...]
    commit_order: tuple[str, ...] = ()  # Candidate ids, oldest first

    def __len__(self) -> int:
        return len(self.assignments)


@dataclass
class PlanSummary:
    """Per-destination commit counts for a dry run."""

    per_destination: dict[str, int] = field(default_factory=dict)
    dropped: int = 0


@dataclass
class BranchQueue:
    """Remaining commits (full ids, oldest first) for one destination branch."""

    branch: str
    commits: list[str] = field(default_factory=list)

    def pop_front(self) -> str | None:
        if not self.commits:
            return None
        return self.commits.pop(0)


@dataclass
class SessionState:
    """Persisted recovery record for a paused replay."""

    session_id: str
    worktree_path: str
    base_oid: str
    original_cwd: str
    branch_queues: list[BranchQueue] = field(default_factory=list)
    current_branch_idx: int = 0
    in_conflict: bool = False
    version: int = STATE_VERSION

    @property
    def current_queue(self) -> BranchQueue | None:
        if self.current_branch_idx >= len(self.branch_queues):
            return None
        return self.branch_queues[self.current_branch_idx]


@dataclass
class ApplySummary:
    """What a finished replay did."""

    created_branches: list[str] = field(default_factory=list)
    commits_per_branch: dict[str, int] = field(default_factory=dict)

    @property
    def total_commits(self) -> int:
        return sum(self.commits_per_branch.values())


@dataclass
class Complete:
    """Every branch queue drained and every branch ref moved."""

    summary: ApplySummary


@dataclass
class Conflict:
    """Replay paused on a conflict; state has been persisted."""

    state: SessionState
    message: str


ApplyOutcome = Union[Complete, Conflict]
