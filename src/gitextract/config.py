"""Runtime configuration for git-extract."""

import logging
import os
from dataclasses import dataclass

from gitextract.errors import ExtractError


BACKEND_GITPYTHON = "gitpython"
BACKEND_SUBPROCESS = "subprocess"
BACKEND_CHOICES = (BACKEND_GITPYTHON, BACKEND_SUBPROCESS)

# Both live inside the repository's control directory
STATE_FILE_NAME = "extract-state.json"
WORKTREE_DIR_NAME = "extract-wt"

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class ConfigError(ExtractError):
    """Invalid configuration value."""

    pass


@dataclass
class ExtractConfig:
    """Settings sourced from the environment, overridable from the CLI."""

    backend: str = BACKEND_GITPYTHON
    log_level: str = "WARNING"

    @property
    def log_level_number(self) -> int:
        return getattr(logging, self.log_level)


def load_config(
    backend: str | None = None,
    verbose: bool = False,
) -> ExtractConfig:
    """
    Build the effective configuration.

    Environment:
        GIT_EXTRACT_BACKEND     gitpython (default) or subprocess
        GIT_EXTRACT_LOG_LEVEL   standard logging level name, default WARNING

    Explicit arguments win over the environment.
    """
    chosen_backend = backend or os.environ.get("GIT_EXTRACT_BACKEND") or BACKEND_GITPYTHON
    chosen_backend = chosen_backend.strip().lower()
    if chosen_backend not in BACKEND_CHOICES:
        raise ConfigError(
            f"GIT_EXTRACT_BACKEND must be one of {', '.join(BACKEND_CHOICES)}, "
            f"got {chosen_backend!r}"
        )

    log_level = (os.environ.get("GIT_EXTRACT_LOG_LEVEL") or "WARNING").strip().upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"GIT_EXTRACT_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
    if verbose:
        log_level = "DEBUG"

    return ExtractConfig(backend=chosen_backend, log_level=log_level)
