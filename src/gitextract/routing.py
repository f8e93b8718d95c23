"""Routing plan: which candidate commit goes to which branch.

The operator edits a plain-text routing file::

    target 1 feature-a
    target 2 feature-b

    1 3f2a9c1 Add parser
    current 77be012 Fix typo
    feature-c 0c1d2e3 Wire up CLI

Each non-comment line routes one commit to an alias, a literal branch
name, or ``current`` (keep on the originating branch). Parsing is strict:
every candidate commit must be routed exactly once.
"""

import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from gitextract.errors import ExtractError
from gitextract.models import (
    Assignment,
    BranchQueue,
    Commit,
    Destination,
    DestinationKind,
    PlanSummary,
    RoutingPlan,
    TargetDef,
    TargetDefs,
)


CURRENT_TOKEN = "current"
TARGET_KEYWORD = "target"
MIN_PREFIX_LENGTH = 7


class RoutingError(ExtractError):
    """The routing specification is invalid."""

    pass


def build_target_defs(*name_lists: Iterable[str]) -> TargetDefs:
    """Merge target names in order, dropping blanks and repeats, aliasing from 1."""
    combined: list[str] = []
    seen: set[str] = set()

    for names in name_lists:
        for name in names:
            trimmed = name.strip()
            if not trimmed or trimmed in seen:
                continue
            seen.add(trimmed)
            combined.append(trimmed)

    return TargetDefs(
        targets=[TargetDef(alias=i, branch=name) for i, name in enumerate(combined, 1)]
    )


def render_draft(targets: TargetDefs, commits: list[Commit]) -> str:
    """Render the editable routing draft with every commit kept on current."""
    lines = [f"{TARGET_KEYWORD} {t.alias} {t.branch}" for t in targets.targets]
    if targets.targets:
        lines.append("")
    lines.extend(f"{CURRENT_TOKEN} {c.short} {c.summary}" for c in commits)
    return "".join(f"{line}\n" for line in lines)


def write_draft(
    targets: TargetDefs,
    commits: list[Commit],
    directory: str | Path | None = None,
) -> Path:
    """Write the draft to a temp file for the editor and return its path."""
    base = Path(directory) if directory else Path(tempfile.gettempdir())
    path = base / f"git-extract-{os.getpid()}.txt"
    with open(path, "w") as f:
        f.write(render_draft(targets, commits))
    return path


def _parse_target_line(line: str, alias_map: dict[int, str]) -> None:
    parts = line.split()
    if len(parts) < 2:
        raise RoutingError(f"target line missing alias: {line}")
    if not parts[1].isdecimal():
        raise RoutingError(f"invalid target alias {parts[1]!r}: {line}")
    if len(parts) < 3:
        raise RoutingError(f"target line missing branch: {line}")
    alias_map[int(parts[1])] = parts[2]


def _parse_destination(
    token: str,
    alias_map: dict[int, str],
    keep_originating: bool,
) -> Destination:
    if token == CURRENT_TOKEN:
        return Destination.originating() if keep_originating else Destination.drop()

    if token.isdecimal():
        alias = int(token)
        if alias not in alias_map:
            raise RoutingError(f"unknown target alias {alias}")
        return Destination.named(alias_map[alias])

    return Destination.named(token)


def _resolve_commit(token: str, commits: list[Commit], by_short: dict[str, str]) -> str:
    if token in by_short:
        return by_short[token]

    if len(token) >= MIN_PREFIX_LENGTH:
        for commit in commits:
            if commit.oid.startswith(token):
                return commit.oid

    raise RoutingError(f"unknown commit sha {token}")


def parse_routing_spec(
    text: str,
    commits: list[Commit],
    targets: TargetDefs,
    keep_originating: bool = True,
) -> RoutingPlan:
    """
    Parse routing text into a plan covering every candidate exactly once.

    Raises RoutingError on the first problem found; nothing is applied
    before the whole text validates.
    """
    alias_map = targets.alias_map()
    by_short = {c.short: c.oid for c in commits}
    seen: set[str] = set()
    assignments: list[Assignment] = []

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        if line == TARGET_KEYWORD or line.startswith(f"{TARGET_KEYWORD} "):
            _parse_target_line(line, alias_map)
            continue

        parts = line.split(maxsplit=2)
        if len(parts) < 3 or not parts[2].strip():
            raise RoutingError(f"line must include a subject: {line}")
        dest_token, commit_token, _subject = parts

        oid = _resolve_commit(commit_token, commits, by_short)
        if oid in seen:
            raise RoutingError(f"duplicate assignment for commit {commit_token}")
        seen.add(oid)

        destination = _parse_destination(dest_token, alias_map, keep_originating)
        assignments.append(Assignment(oid=oid, destination=destination))

    if len(assignments) != len(commits):
        missing = [c.short for c in commits if c.oid not in seen]
        raise RoutingError(
            f"every listed commit must be assigned; missing: {', '.join(missing)}"
        )

    return RoutingPlan(
        assignments=tuple(assignments),
        commit_order=tuple(c.oid for c in commits),
    )


def parse_routing_file(
    path: str | Path,
    commits: list[Commit],
    targets: TargetDefs,
    keep_originating: bool = True,
) -> RoutingPlan:
    """Read a routing file from disk and parse it."""
    try:
        with open(path, "r") as f:
            text = f.read()
    except OSError as e:
        raise RoutingError(f"read routing file {path}: {e}")
    return parse_routing_spec(text, commits, targets, keep_originating)


def summarize(plan: RoutingPlan) -> PlanSummary:
    """Count assignments per destination label; drops are counted apart."""
    summary = PlanSummary()
    for assignment in plan.assignments:
        destination = assignment.destination
        if destination.kind == DestinationKind.DROP:
            summary.dropped += 1
            continue
        label = destination.label
        summary.per_destination[label] = summary.per_destination.get(label, 0) + 1
    return summary


def build_branch_queues(plan: RoutingPlan) -> list[BranchQueue]:
    """
    Group branch-routed commits into per-branch queues.

    Branches appear in the order they are first routed to. Within a branch,
    commits follow the chronological order of the commit feed even when the
    routing file lists them out of order. Current and dropped commits are
    not queued.
    """
    queues: dict[str, BranchQueue] = {}
    for assignment in plan.assignments:
        destination = assignment.destination
        if not destination.is_branch:
            continue
        queue = queues.setdefault(destination.branch, BranchQueue(branch=destination.branch))
        queue.commits.append(assignment.oid)

    if plan.commit_order:
        positions = {oid: i for i, oid in enumerate(plan.commit_order)}
        for queue in queues.values():
            queue.commits.sort(key=lambda oid: positions.get(oid, len(positions)))
    return list(queues.values())
