"""Custom exceptions for Git Manager."""


class GitManagerError(Exception):
    """Base exception for Git Manager errors."""


class WorktreeError(GitManagerError):
    """Error creating or removing a worktree."""


class CommitError(GitManagerError):
    """Error staging or committing changes."""


class PushError(GitManagerError):
    """Error pushing to remote."""


class PRError(GitManagerError):
    """Error creating a pull request."""


class MissingTokenError(PRError):
    """GitHub token required when not using the gh CLI."""


class PRFetchError(GitManagerError):
    """Error reading a pull request or its comments."""
