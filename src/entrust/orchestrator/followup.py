"""FollowUp - another agent turn on the branch of an already opened PR."""

from __future__ import annotations

import time
from collections.abc import Callable
from functools import partial
from typing import TYPE_CHECKING

from entrust.orchestrator.exceptions import PipelineFailure
from entrust.orchestrator.models import ErrorKind, PipelineResult, PipelineState
from entrust.orchestrator.pipeline import PipelineOptions, ProgressCallback, WorktreeRun
from entrust.orchestrator.prompts import feedback_commit_message
from entrust.workers import AgentExecutionError, SessionNotContinuableError

if TYPE_CHECKING:
    from entrust.git_manager import GitManager
    from entrust.sessions import PRSession
    from entrust.workers import AIAgent, TestRunner
    from entrust.workspace import WorkspaceProvisioner


class FollowUp(WorktreeRun):
    """Resumes the agent session behind a PR and pushes the result to its branch.

    The PR branch is checked out in a fresh worktree, the stored session is
    continued with ``prompt``, tests run with the usual fix loop, and new
    commits are pushed to the same branch. No PR is opened and the ticket
    status is left alone. The resulting PipelineResult carries the PR URL
    and the newest session handle.
    """

    def __init__(
        self,
        pr_url: str,
        session: PRSession,
        prompt: str,
        git_manager: GitManager,
        provisioner: WorkspaceProvisioner,
        agent: AIAgent,
        test_runner: TestRunner | None = None,
        options: PipelineOptions | None = None,
        progress_callback: ProgressCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the follow-up.

        Args:
            pr_url: Pull request being followed up.
            session: Stored session of the PR.
            prompt: What to ask the agent, e.g. the review feedback.
            git_manager: GitManager for commits and pushes.
            provisioner: Creates and removes the worktree.
            agent: AI coding agent that owns the session.
            test_runner: Runs the project's tests. Defaults to auto-detection.
            options: Run options. ``base_branch`` and ``draft`` are unused.
            progress_callback: Called with (ticket_id, state) on each transition.
            sleep: Used to wait between agent retries.
        """
        super().__init__(
            session.ticket_id,
            git_manager,
            provisioner,
            agent,
            test_runner,
            options,
            progress_callback,
            sleep,
        )
        self.pr_url = pr_url
        self.session = session
        self.prompt = prompt
        self._session_id = session.session_id

    def _run(self) -> PipelineResult:
        branch = self.session.branch
        workspace = self._provision(branch, branch=branch)

        self._transition(PipelineState.IMPLEMENTING)
        self._log(
            "info", "Resuming %s session %s", self.agent.name, self.session.session_id[:8]
        )
        call = partial(
            self.agent.continue_session,
            self.session.session_id,
            self.prompt,
            self._agent_context(workspace),
        )
        try:
            result = self._call_agent(call)
        except SessionNotContinuableError as e:
            raise PipelineFailure(
                ErrorKind.AGENT_EXECUTION_FAILED,
                f"The session behind {self.pr_url} can no longer be resumed: {e}",
            ) from e
        except AgentExecutionError as e:
            raise PipelineFailure(ErrorKind.AGENT_EXECUTION_FAILED, str(e)) from e
        self._session_id = result.session_id or self._session_id
        self._log_changes(workspace)

        if self.options.skip_tests:
            self._log("info", "Skipping tests")
        else:
            self._test_and_fix(workspace)

        if not self._commit(feedback_commit_message(self.ticket_id), workspace, branch):
            self._log("warning", "No changes were made, nothing pushed")
            return self._result(PipelineResult.no_changes(self.ticket_id, self._elapsed()))

        self._transition(PipelineState.SUCCEEDED)
        self._log("info", "Pushed follow-up to %s", branch)
        return self._result(
            PipelineResult.succeeded(self.ticket_id, self.pr_url, self._elapsed())
        )
