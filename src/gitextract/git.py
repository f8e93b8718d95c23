"""Repository discovery and the commit feed for git-extract."""

import logging
from configparser import NoOptionError, NoSectionError
from pathlib import Path

from git import Repo
from git.exc import BadName, BadObject, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from gitextract.errors import ExtractError
from gitextract.models import Commit


logger = logging.getLogger(__name__)

BASE_CANDIDATES = ("origin/main", "main", "origin/master", "master")
SHORT_ID_LENGTH = 7


class GitError(ExtractError):
    """Git operation failed."""

    pass


class GitOperations:
    """Read-only repository queries used before a replay starts."""

    def __init__(self, repo_path: str | Path | None = None):
        self.repo_path = Path(repo_path) if repo_path else Path.cwd()
        try:
            self.repo = Repo(self.repo_path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise GitError(f"Not a git repository: {self.repo_path}")

    @property
    def git_dir(self) -> Path:
        """The repository's control directory (.git)."""
        return Path(self.repo.git_dir)

    @property
    def working_dir(self) -> Path:
        """The primary checkout; bare repositories have none."""
        if self.repo.bare or self.repo.working_tree_dir is None:
            raise GitError("repository has no working directory")
        return Path(self.repo.working_tree_dir)

    @property
    def current_branch(self) -> str:
        """Get the current branch name."""
        if self.repo.head.is_detached:
            raise GitError("detached HEAD is not supported; please check out a branch")
        return self.repo.active_branch.name

    def ensure_clean(self, allow_dirty: bool = False) -> None:
        """Refuse detached heads always, and dirty trees unless allowed."""
        if self.repo.head.is_detached:
            raise GitError("detached HEAD is not supported; please check out a branch")
        if allow_dirty:
            return
        if self.repo.is_dirty(untracked_files=True):
            raise GitError("working tree is dirty; commit/stash or pass --allow-dirty")

    def resolve_commit(self, ref: str) -> str:
        """Resolve any revision to a full commit id."""
        try:
            return self.repo.commit(ref).hexsha
        except (BadName, BadObject, ValueError, GitCommandError):
            raise GitError(f"unable to resolve ref {ref}")

    def detect_base(self, user_base: str | None = None) -> str:
        """Pick the base point new branches start from."""
        if user_base:
            return self.resolve_commit(user_base)

        for candidate in BASE_CANDIDATES:
            try:
                return self.resolve_commit(candidate)
            except GitError:
                continue

        head = self.resolve_commit("HEAD")
        logger.warning("no main/master found; defaulting base to HEAD (%s)", head)
        return head

    def collect_commits(self, base_oid: str) -> list[Commit]:
        """
        List the candidate commits between the base and HEAD, oldest first.

        The range starts at the merge base of HEAD and the base point, so
        commits already on the upstream are never offered for routing.
        """
        head = self.resolve_commit("HEAD")
        try:
            merge_bases = self.repo.merge_base(head, base_oid)
        except GitCommandError:
            merge_bases = []
        stop = merge_bases[0].hexsha if merge_bases else base_oid

        commits = []
        for commit in self.repo.iter_commits(f"{stop}..{head}", topo_order=True, reverse=True):
            summary = commit.summary
            if isinstance(summary, bytes):
                summary = summary.decode("utf-8", errors="replace")
            commits.append(
                Commit(
                    oid=commit.hexsha,
                    short=commit.hexsha[:SHORT_ID_LENGTH],
                    summary=summary or "(no summary)",
                )
            )
        return commits

    def get_config_value(self, section: str, option: str) -> str | None:
        """Read a git config value, or None when unset."""
        reader = self.repo.config_reader()
        try:
            value = reader.get_value(section, option)
        except (NoOptionError, NoSectionError):
            return None
        return str(value)
