"""Exceptions for the Workspace module."""

from __future__ import annotations

from pathlib import Path


class WorkspaceError(Exception):
    """Base exception for workspace errors."""


class WorkspaceCreationError(WorkspaceError):
    """The worktree for a ticket could not be created.

    Carries the path that was being created so whatever partial state
    exists can still be torn down.
    """

    def __init__(self, message: str, path: Path) -> None:
        super().__init__(message)
        self.path = path
