"""Workspace Provisioner - one isolated git worktree per ticket."""

from __future__ import annotations

import logging
import tempfile
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from entrust.git_manager import GitManagerError, branch_for_ticket, sanitize_branch_name
from entrust.workspace.exceptions import WorkspaceCreationError
from entrust.workspace.models import Workspace

if TYPE_CHECKING:
    from entrust.git_manager import GitManager

logger = logging.getLogger("entrust.workspace")

WORKSPACE_PREFIX = "entrust"


class WorkspaceProvisioner:
    """Creates and destroys per-ticket worktrees of a shared repository.

    Worktree directories are named after the sanitized ticket plus a random
    suffix, so concurrent pipelines never share a directory.
    """

    def __init__(
        self,
        git_manager: GitManager,
        repo_root: str | Path,
        workspace_root: str | Path | None = None,
    ) -> None:
        """Initialize the provisioner.

        Args:
            git_manager: GitManager used for worktree operations.
            repo_root: Top-level directory of the shared repository clone.
            workspace_root: Parent directory for worktrees. Defaults to the
                system temp directory.
        """
        self.git_manager = git_manager
        self.repo_root = Path(repo_root)
        self.workspace_root = Path(workspace_root or tempfile.gettempdir())

    def workspace_path(self, ticket_id: str) -> Path:
        """Allocate a fresh, unique worktree path for a ticket."""
        name = sanitize_branch_name(ticket_id).replace("/", "-")
        suffix = uuid.uuid4().hex[:8]
        return self.workspace_root / f"{WORKSPACE_PREFIX}-{name}-{suffix}"

    def provision(
        self, ticket_id: str, base_branch: str, branch: str | None = None
    ) -> Workspace:
        """Create a worktree with the ticket's branch checked out.

        Args:
            ticket_id: Ticket the workspace is for.
            base_branch: Branch new ticket branches start from.
            branch: Branch to check out. Defaults to the ticket's feature
                branch. To continue an existing remote branch, pass it as
                both ``branch`` and ``base_branch``.

        Returns:
            The ready-to-use Workspace.

        Raises:
            WorkspaceCreationError: If the worktree cannot be created.
        """
        branch = branch or branch_for_ticket(ticket_id)
        path = self.workspace_path(ticket_id)
        logger.info("Provisioning worktree for %s at %s (branch %s)", ticket_id, path, branch)

        try:
            self.workspace_root.mkdir(parents=True, exist_ok=True)
            self.git_manager.create_worktree(path, branch, base_branch, self.repo_root)
        except (GitManagerError, OSError) as e:
            raise WorkspaceCreationError(str(e), path) from e

        return Workspace(path=path, branch=branch, repo_root=self.repo_root)

    def teardown(self, path: str | Path) -> None:
        """Remove a worktree directory and prune stale worktree metadata.

        Best effort: failures are logged, never raised.
        """
        logger.info("Removing worktree %s", path)
        try:
            self.git_manager.remove_worktree(path, self.repo_root)
        except (GitManagerError, OSError) as e:
            logger.warning("Failed to clean up worktree %s: %s", path, e)
