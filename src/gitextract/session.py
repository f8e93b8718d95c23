"""Session persistence for git-extract.

A paused replay is recorded in a single JSON file inside the repository's
control directory. Its presence blocks starting another plan until the
session is continued or aborted.
"""

import json
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from gitextract.config import STATE_FILE_NAME
from gitextract.errors import ExtractError
from gitextract.models import STATE_VERSION, BranchQueue, SessionState


class SessionError(ExtractError):
    """Session state could not be read or written."""

    pass


class SessionExistsError(SessionError):
    """A session is already in progress."""

    pass


def state_path(git_dir: str | Path) -> Path:
    """Get the path to the session file for a repository."""
    return Path(git_dir) / STATE_FILE_NAME


def generate_session_id() -> str:
    """Generate a unique session ID."""
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    short_uuid = str(uuid.uuid4())[:8]
    return f"{timestamp}-{short_uuid}"


def serialize_state(state: SessionState) -> dict[str, Any]:
    """Serialize a SessionState to a dict for JSON storage."""
    return {
        "version": state.version,
        "session_id": state.session_id,
        "worktree_path": state.worktree_path,
        "current_branch_idx": state.current_branch_idx,
        "branch_queues": [
            {"branch": q.branch, "commits": list(q.commits)}
            for q in state.branch_queues
        ],
        "in_conflict": state.in_conflict,
        "base_oid": state.base_oid,
        "original_cwd": state.original_cwd,
    }


def deserialize_state(data: dict[str, Any]) -> SessionState:
    """Deserialize a SessionState from a dict."""
    version = data.get("version")
    if version != STATE_VERSION:
        raise SessionError(f"unsupported session state version: {version!r}")

    try:
        queues = [
            BranchQueue(branch=q["branch"], commits=list(q.get("commits", [])))
            for q in data.get("branch_queues", [])
        ]
        state = SessionState(
            session_id=data["session_id"],
            worktree_path=data["worktree_path"],
            base_oid=data["base_oid"],
            original_cwd=data.get("original_cwd", ""),
            branch_queues=queues,
            current_branch_idx=int(data.get("current_branch_idx", 0)),
            in_conflict=bool(data.get("in_conflict", False)),
            version=version,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SessionError(f"malformed session state: {e}")

    if state.current_branch_idx < 0:
        raise SessionError("malformed session state: negative branch index")
    return state


def save_state(path: Path, state: SessionState) -> Path:
    """Write the state atomically so a crash never leaves half a file."""
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with open(tmp_path, "w") as f:
            json.dump(serialize_state(state), f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        raise SessionError(f"writing state file {path}: {e}")
    return path


def load_state(path: Path) -> SessionState | None:
    """Load the state from disk, or None when no session exists."""
    if not path.exists():
        return None

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise SessionError(f"parsing state file {path}: {e}")
    except OSError as e:
        raise SessionError(f"reading state file {path}: {e}")

    if not isinstance(data, dict):
        raise SessionError(f"parsing state file {path}: expected an object")
    return deserialize_state(data)


def delete_state(path: Path) -> bool:
    """Delete the session file."""
    if path.exists():
        path.unlink()
        return True
    return False


class SessionLock:
    """
    The one-active-session gate for a repository.

    The lock is taken in memory when a fresh plan starts and only becomes
    durable when the engine persists a state on pause. A persisted state can
    be adopted by a later process to resume, and releasing deletes it.
    """

    def __init__(self, git_dir: str | Path):
        self.path = state_path(git_dir)
        self.held = False

    def inspect(self) -> SessionState | None:
        """Return the persisted session, if any."""
        return load_state(self.path)

    def exists(self) -> bool:
        return self.path.exists()

    def try_acquire(self) -> bool:
        """Take the lock for a fresh plan; False if a session already exists."""
        if self.held or self.path.exists():
            return False
        self.held = True
        return True

    def acquire(self) -> None:
        """Like try_acquire, but raise when a session is in progress."""
        if not self.try_acquire():
            raise SessionExistsError(
                "an extract session is already in progress; run --continue or --abort"
            )

    def adopt(self, state: SessionState) -> None:
        """Take over the lock recorded by a persisted session."""
        persisted = self.inspect()
        if persisted is None:
            raise SessionError("no extract session to continue")
        if persisted.session_id != state.session_id:
            raise SessionError(
                f"session {state.session_id} is not the active session ({persisted.session_id})"
            )
        self.held = True

    def persist(self, state: SessionState) -> Path:
        """Hand the lock over to a durable session record."""
        if not self.held:
            raise SessionError("session lock is not held")
        return save_state(self.path, state)

    def release(self) -> None:
        """Drop the lock and any durable record of it."""
        delete_state(self.path)
        self.held = False
