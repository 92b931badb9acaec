"""Data models for the Workspace module."""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Workspace:
    """An isolated worktree owned by exactly one pipeline run.

    Attributes:
        path: Worktree directory.
        branch: Branch checked out in the worktree.
        repo_root: Shared repository the worktree belongs to.
    """

    path: Path
    branch: str
    repo_root: Path
