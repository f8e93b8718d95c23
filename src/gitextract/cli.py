"""CLI for git-extract."""

import re
import sys
from pathlib import Path

import rich_click as click

from gitextract import display

# Configure rich-click for pretty help output
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.USE_MARKDOWN = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = "Try running '--help' for more information."
click.rich_click.MAX_WIDTH = 100
click.rich_click.STYLE_OPTION = "bold cyan"
click.rich_click.STYLE_ARGUMENT = "bold cyan"
click.rich_click.STYLE_SWITCH = "bold yellow"
from gitextract.config import BACKEND_CHOICES, load_config
from gitextract.editor import launch_editor, resolve_editor
from gitextract.engine import NothingToResumeError, WorktreeApplyEngine, create_engine
from gitextract.errors import ExtractError
from gitextract.git import GitOperations
from gitextract.models import ApplyOutcome, Complete
from gitextract.routing import build_target_defs, parse_routing_file, summarize, write_draft
from gitextract.session import SessionExistsError


def _split_target_option(values: tuple[str, ...]) -> list[str]:
    """Split --targets values on commas and whitespace."""
    names: list[str] = []
    for value in values:
        names.extend(part for part in re.split(r"[,\s]+", value) if part)
    return names


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("targets", nargs=-1, metavar="[TARGET]...")
@click.option(
    "--targets", "target_option", multiple=True, metavar="A,B",
    help="Predefine targets as a comma or space separated list. "
         "Combined with positional targets; duplicates are ignored."
)
@click.option(
    "--base", default=None, metavar="REF",
    help="Base to create new branches from. Defaults to origin/main, main, "
         "origin/master or master, whichever exists first."
)
@click.option(
    "--default-current", is_flag=True,
    help="Keep commits routed to 'current' on the current branch (the default)."
)
@click.option(
    "--no-current", is_flag=True,
    help="Drop commits routed to 'current' instead of keeping them."
)
@click.option(
    "--editor", default=None, metavar="CMD",
    help="Editor command for the routing file. Defaults to the editor git "
         "would use for an interactive rebase."
)
@click.option(
    "--dry-run", is_flag=True,
    help="Parse and validate the routing file, print the assignments, change nothing."
)
@click.option(
    "--allow-dirty", is_flag=True,
    help="Allow running with a dirty working tree, or continuing from a dirty "
         "conflict worktree."
)
@click.option(
    "--routing-file", default=None, hidden=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Use an existing routing file instead of launching the editor."
)
@click.option(
    "--continue", "continue_session", is_flag=True,
    help="Resume a session paused on a conflict."
)
@click.option(
    "--abort", "abort_session", is_flag=True,
    help="Abort a paused session and remove its worktree. Branches are left untouched."
)
@click.option(
    "--backend", type=click.Choice(BACKEND_CHOICES), default=None,
    help="How git is driven. Overrides GIT_EXTRACT_BACKEND."
)
@click.option(
    "--verbose", "-v", is_flag=True,
    help="Log every git operation to stderr."
)
def cli(
    targets,
    target_option,
    base,
    default_current,
    no_current,
    editor,
    dry_run,
    allow_dirty,
    routing_file,
    continue_session,
    abort_session,
    backend,
    verbose,
):
    """**git extract** - split a branch into multiple branches in one go.

    Opens an editor listing every commit between the base and HEAD. Route each
    commit to a target alias, a branch name, or `current`, save, and every
    routed commit is cherry-picked onto its branch in a temporary worktree.
    Your checkout is never touched.

    **Examples:**

        git extract feature-a feature-b     Route commits to two branches

        git extract --dry-run feature-a     Validate the routing only

        git extract --continue              Resume after resolving a conflict

        git extract --abort                 Give up on a paused session

    **Routing file:**

        target 1 feature-a

        1 3f2a9c1 Add parser

        current 77be012 Fix typo
    """
    if default_current and no_current:
        raise click.UsageError("--default-current and --no-current are mutually exclusive")
    if continue_session and abort_session:
        raise click.UsageError("--continue and --abort are mutually exclusive")

    try:
        config = load_config(backend=backend, verbose=verbose)
        display.configure_logging(config.log_level_number)

        git = GitOperations()
        engine = create_engine(config=config, git=git)

        if continue_session or abort_session:
            _resume_or_abort(engine, abort_session, allow_dirty)
            return

        _start(
            git,
            engine,
            names=(_split_target_option(target_option), list(targets)),
            base=base,
            keep_originating=not no_current,
            editor=editor,
            dry_run=dry_run,
            allow_dirty=allow_dirty,
            routing_file=routing_file,
        )

    except ExtractError as e:
        display.print_error(str(e))
        sys.exit(1)


def _resume_or_abort(engine: WorktreeApplyEngine, abort: bool, allow_dirty: bool) -> None:
    state = engine.lock.inspect()

    if abort:
        tree = engine.abort_session(state)
        display.print_session_aborted(str(tree))
        return

    if state is None:
        raise NothingToResumeError("no extract session to continue")
    _handle_outcome(engine.resume_session(state, allow_dirty=allow_dirty))


def _start(
    git: GitOperations,
    engine: WorktreeApplyEngine,
    names: tuple[list[str], list[str]],
    base: str | None,
    keep_originating: bool,
    editor: str | None,
    dry_run: bool,
    allow_dirty: bool,
    routing_file: Path | None,
) -> None:
    if engine.lock.exists():
        raise SessionExistsError(
            "an extract session is already in progress; run --continue or --abort"
        )
    git.ensure_clean(allow_dirty)

    branch = git.current_branch
    base_oid = git.detect_base(base)
    commits = git.collect_commits(base_oid)
    display.print_commit_count(len(commits), branch)

    target_defs = build_target_defs(*names)

    if routing_file is not None:
        plan = parse_routing_file(routing_file, commits, target_defs, keep_originating)
    else:
        draft = write_draft(target_defs, commits)
        launch_editor(resolve_editor(editor, git), draft)
        plan = parse_routing_file(draft, commits, target_defs, keep_originating)
        draft.unlink(missing_ok=True)

    if dry_run:
        display.print_dry_run_notice()
        display.print_plan_summary(summarize(plan))
        return

    _handle_outcome(engine.apply_plan(plan, base_oid))


def _handle_outcome(outcome: ApplyOutcome) -> None:
    if isinstance(outcome, Complete):
        display.print_apply_summary(outcome.summary)
    else:
        display.print_conflict(outcome.state, outcome.message)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
