"""Workspace - isolated per-ticket git worktrees."""

from entrust.workspace.exceptions import WorkspaceCreationError, WorkspaceError
from entrust.workspace.models import Workspace
from entrust.workspace.provisioner import WorkspaceProvisioner

__all__ = [
    "Workspace",
    "WorkspaceCreationError",
    "WorkspaceError",
    "WorkspaceProvisioner",
]
