from pathlib import Path

import pytest

from gitextract.backends import create_backend
from gitextract.config import BACKEND_CHOICES
from gitextract.engine import WorktreeApplyEngine
from tests.git_helpers import init_repo


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """A repository on ``main`` with a single base commit."""
    return init_repo(tmp_path / "repo")


@pytest.fixture(params=BACKEND_CHOICES)
def backend(request, repo: Path):
    return create_backend(request.param, repo)


@pytest.fixture
def engine(backend, repo: Path) -> WorktreeApplyEngine:
    return WorktreeApplyEngine(backend=backend, git_dir=repo / ".git", original_cwd=repo)
