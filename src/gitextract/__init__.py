"""git-extract - split a branch into several branches in one go.

Route each commit of the current branch to a target branch in a text file,
then replay the routed commits in an isolated worktree, with resumable
conflict handling.
"""

__version__ = "0.1.0"

from gitextract.engine import WorktreeApplyEngine, create_engine
from gitextract.models import ApplySummary, Complete, Conflict, RoutingPlan, SessionState
from gitextract.routing import parse_routing_spec, render_draft, summarize

__all__ = [
    "__version__",
    "WorktreeApplyEngine",
    "create_engine",
    "ApplySummary",
    "Complete",
    "Conflict",
    "RoutingPlan",
    "SessionState",
    "parse_routing_spec",
    "render_draft",
    "summarize",
]
