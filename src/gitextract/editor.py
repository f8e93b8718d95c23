"""Launching the operator's editor on the routing draft."""

import os
import shlex
import subprocess
from pathlib import Path

from gitextract.errors import ExtractError
from gitextract.git import GitOperations


DEFAULT_EDITOR = "vi"


class EditorError(ExtractError):
    """The editor could not be run or exited with an error."""

    pass


def _env_value(name: str) -> str | None:
    value = os.environ.get(name)
    if value and value.strip():
        return value
    return None


def resolve_editor(explicit: str | None = None, git: GitOperations | None = None) -> str:
    """
    Pick the editor command the way git does for interactive rebase.

    Order: explicit value, GIT_SEQUENCE_EDITOR, GIT_EDITOR, core.editor,
    VISUAL, EDITOR, then vi. Blank values are skipped.
    """
    if explicit and explicit.strip():
        return explicit

    for name in ("GIT_SEQUENCE_EDITOR", "GIT_EDITOR"):
        value = _env_value(name)
        if value:
            return value

    if git is not None:
        configured = git.get_config_value("core", "editor")
        if configured and configured.strip():
            return configured

    for name in ("VISUAL", "EDITOR"):
        value = _env_value(name)
        if value:
            return value

    return DEFAULT_EDITOR


def launch_editor(editor: str, path: str | Path) -> None:
    """Open ``path`` in ``editor`` and wait for it to exit."""
    command = shlex.split(editor) + [str(path)]
    try:
        result = subprocess.run(command)
    except OSError as e:
        raise EditorError(f"launching editor {editor!r}: {e}")
    if result.returncode != 0:
        raise EditorError("editor exited with error")
