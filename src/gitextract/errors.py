"""Base error for git-extract."""


class ExtractError(Exception):
    """Any failure the CLI reports as a single-line diagnostic."""

    pass
