"""Git Manager - Handles git worktrees and GitHub pull requests."""

from entrust.git_manager.branch import branch_for_ticket, sanitize_branch_name
from entrust.git_manager.exceptions import (
    CommitError,
    GitManagerError,
    MissingTokenError,
    PRError,
    PRFetchError,
    PushError,
    WorktreeError,
)
from entrust.git_manager.manager import GitManager
from entrust.git_manager.models import (
    PullRequestInfo,
    PullRequestParams,
    PullRequestResult,
    ReviewComment,
    parse_pr_reference,
)

__all__ = [
    "CommitError",
    "GitManager",
    "GitManagerError",
    "MissingTokenError",
    "PRError",
    "PRFetchError",
    "PullRequestInfo",
    "PullRequestParams",
    "PullRequestResult",
    "PushError",
    "ReviewComment",
    "WorktreeError",
    "branch_for_ticket",
    "parse_pr_reference",
    "sanitize_branch_name",
]
