"""Pipeline - the per-ticket state machine from issue to pull request."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from functools import partial
from typing import TYPE_CHECKING, Any

from entrust.git_manager import GitManagerError, PullRequestParams
from entrust.logging import sanitize_for_log, truncate_output
from entrust.orchestrator.exceptions import PipelineFailure, TestsExhaustedError
from entrust.orchestrator.models import ErrorKind, PipelineResult, PipelineState, RetryState
from entrust.orchestrator.prompts import (
    build_fix_prompt,
    build_pr_body,
    build_task_prompt,
    commit_message,
)
from entrust.tracker import (
    IN_PROGRESS_STATUS,
    IN_REVIEW_STATUS,
    InvalidStatusError,
    IssueNotFoundError,
    TrackerError,
)
from entrust.workers import (
    AgentContext,
    AgentExecutionError,
    ProjectTypeUnknownError,
    SessionNotContinuableError,
    TestRunner,
)
from entrust.workspace import WorkspaceCreationError

if TYPE_CHECKING:
    from pathlib import Path

    from entrust.git_manager import GitManager, PullRequestResult
    from entrust.tracker import TaskIssue, TaskTracker
    from entrust.workers import AgentResult, AIAgent
    from entrust.workspace import Workspace, WorkspaceProvisioner

logger = logging.getLogger("entrust.orchestrator.pipeline")

ProgressCallback = Callable[[str, PipelineState], None]


@dataclass
class PipelineOptions:
    """Per-run knobs of a pipeline.

    Attributes:
        base_branch: Branch worktrees start from and PRs target.
        skip_tests: Skip the test-and-fix loop.
        draft: Open PRs as drafts.
        max_attempts: Maximum fix attempts after failing tests.
        keep_workspace: Leave the worktree on disk after the run.
        max_agent_retries: Retries of a retryable agent failure.
        agent_retry_delay: Seconds to wait before such a retry when the
            agent gives no hint.
        agent_timeout: Seconds before an agent invocation is killed.
        additional_context: Extra text appended to the task prompt.
    """

    base_branch: str = "main"
    skip_tests: bool = False
    draft: bool = False
    max_attempts: int = 3
    keep_workspace: bool = False
    max_agent_retries: int = 2
    agent_retry_delay: float = 30.0
    agent_timeout: float = 3600.0
    additional_context: str | None = None


class WorktreeRun:
    """Agent work on one branch inside a worktree of its own.

    Holds the steps shared by new tickets and PR follow-ups: provisioning,
    the agent retry policy, the test-and-fix loop, committing and teardown.
    Subclasses implement ``_run``. Fatal step failures become a FAILED
    result and ``run()`` never raises. A provisioned worktree is torn down
    exactly once when the run ends, unless ``keep_workspace`` is set.
    """

    def __init__(
        self,
        ticket_id: str,
        git_manager: GitManager,
        provisioner: WorkspaceProvisioner,
        agent: AIAgent,
        test_runner: TestRunner | None = None,
        options: PipelineOptions | None = None,
        progress_callback: ProgressCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ticket_id = ticket_id
        self.git_manager = git_manager
        self.provisioner = provisioner
        self.agent = agent
        self.test_runner = test_runner or TestRunner()
        self.options = options or PipelineOptions()
        self.progress_callback = progress_callback
        self.sleep = sleep

        self.state: PipelineState | None = None
        self._workspace_path: Path | None = None
        self._branch: str | None = None
        self._session_id: str | None = None
        self._torn_down = False
        self._start_time = 0.0

    def run(self) -> PipelineResult:
        """Run to completion.

        Returns:
            The terminal PipelineResult. Exceptions never escape.
        """
        self._start_time = time.perf_counter()
        self._log("info", "Starting pipeline")
        try:
            result = self._run()
        except PipelineFailure as e:
            self._log("error", "Failed in %s (%s): %s", self.state, e.kind, e.message)
            result = self._failed(e.kind, e.message)
        except Exception as e:
            logger.exception("[%s] Unexpected error in %s", self.ticket_id, self.state)
            result = self._failed(ErrorKind.UNEXPECTED, f"Unexpected error: {e}")
        finally:
            self._teardown()

        self._log(
            "info", "Finished with status %s in %.1fs", result.status, result.duration_seconds
        )
        return result

    def _run(self) -> PipelineResult:
        raise NotImplementedError

    def _provision(self, base_branch: str, branch: str | None = None) -> Workspace:
        self._transition(PipelineState.PROVISIONING)
        try:
            workspace = self.provisioner.provision(self.ticket_id, base_branch, branch=branch)
        except WorkspaceCreationError as e:
            self._workspace_path = e.path
            raise PipelineFailure(ErrorKind.WORKSPACE_CREATION_FAILED, str(e)) from e
        self._workspace_path = workspace.path
        self._branch = workspace.branch
        self._log("info", "Worktree ready at %s (branch %s)", workspace.path, workspace.branch)
        return workspace

    def _ask_agent(self, call: Callable[..., AgentResult], *args: Any) -> AgentResult:
        """Invoke the agent for the implementation step and remember its session."""
        try:
            result = self._call_agent(partial(call, *args))
        except AgentExecutionError as e:
            raise PipelineFailure(ErrorKind.AGENT_EXECUTION_FAILED, str(e)) from e
        self._session_id = result.session_id or self._session_id
        return result

    def _test_and_fix(self, workspace: Workspace) -> None:
        self._transition(PipelineState.TESTING)
        retry = RetryState(max_attempts=self.options.max_attempts)
        context = self._agent_context(workspace)

        while True:
            try:
                outcome = self.test_runner.run(workspace.path)
            except ProjectTypeUnknownError as e:
                raise PipelineFailure(ErrorKind.PROJECT_TYPE_UNKNOWN, str(e)) from e

            if outcome.passed:
                if retry.attempt:
                    self._log("info", "Tests passed after %d fix attempt(s)", retry.attempt)
                else:
                    self._log("info", "Tests passed")
                return

            retry.last_error = outcome.output
            self._log("debug", "Test output:\n%s", truncate_output(sanitize_for_log(outcome.output)))

            if retry.exhausted:
                self._log("error", "Tests failed after %d fix attempt(s)", retry.attempt)
                raise TestsExhaustedError(retry.attempt, outcome.output)
            if self._session_id is None:
                self._log("error", "Tests failed and cannot auto-fix (no session handle)")
                raise TestsExhaustedError(retry.attempt, outcome.output)

            retry.attempt += 1
            self._log(
                "warning",
                "Tests failed, asking %s to fix them (attempt %d/%d)",
                self.agent.name,
                retry.attempt,
                retry.max_attempts,
            )
            prompt = build_fix_prompt(outcome.output, retry.attempt)
            try:
                result = self._call_agent(
                    partial(self.agent.continue_session, self._session_id, prompt, context)
                )
            except SessionNotContinuableError as e:
                raise PipelineFailure(
                    ErrorKind.TESTS_EXHAUSTED, f"Tests failed and the agent session ended: {e}"
                ) from e
            except AgentExecutionError as e:
                raise PipelineFailure(ErrorKind.AGENT_EXECUTION_FAILED, str(e)) from e
            self._session_id = result.session_id or self._session_id

    def _commit(self, message: str, workspace: Workspace, base_branch: str) -> bool:
        self._transition(PipelineState.COMMITTING)
        try:
            return self.git_manager.commit_and_push(
                message, workspace.branch, workspace.path, base_branch=base_branch
            )
        except GitManagerError as e:
            raise PipelineFailure(ErrorKind.PUSH_FAILED, str(e)) from e

    def _call_agent(self, call: Callable[[], AgentResult]) -> AgentResult:
        """Invoke the agent, retrying retryable failures with a delay."""
        retries = 0
        while True:
            try:
                return call()
            except AgentExecutionError as e:
                if not e.retryable or retries >= self.options.max_agent_retries:
                    raise
                retries += 1
                delay = e.retry_after if e.retry_after is not None else self.options.agent_retry_delay
                self._log(
                    "warning",
                    "%s failed (%s), retrying in %.0fs (%d/%d)",
                    self.agent.name,
                    e,
                    delay,
                    retries,
                    self.options.max_agent_retries,
                )
                self.sleep(delay)

    def _agent_context(self, workspace: Workspace) -> AgentContext:
        return AgentContext(
            working_directory=workspace.path,
            timeout=self.options.agent_timeout,
            log_callback=self._log_agent_line,
        )

    def _log_agent_line(self, line: str) -> None:
        logger.debug("[%s] %s", self.ticket_id, sanitize_for_log(line))

    def _log_changes(self, workspace: Workspace) -> None:
        try:
            status = self.git_manager.status_short(workspace.path)
        except GitManagerError as e:
            self._log("warning", "Could not read changed files: %s", e)
            return
        if status:
            self._log("info", "Changes detected:\n%s", status)
        else:
            self._log("warning", "No files were modified by %s", self.agent.name)

    def _teardown(self) -> None:
        if self._workspace_path is None or self._torn_down:
            return
        self._torn_down = True
        if self.options.keep_workspace:
            self._log("info", "Keeping worktree at %s", self._workspace_path)
            return
        try:
            self.provisioner.teardown(self._workspace_path)
        except Exception:
            logger.exception(
                "[%s] Failed to remove worktree %s", self.ticket_id, self._workspace_path
            )

    def _transition(self, state: PipelineState) -> None:
        previous = self.state
        self.state = state
        self._log("info", "%s -> %s", previous or "start", state)
        if self.progress_callback is not None:
            self.progress_callback(self.ticket_id, state)

    def _failed(self, kind: ErrorKind, message: str) -> PipelineResult:
        return self._result(PipelineResult.failed(self.ticket_id, kind, message, self._elapsed()))

    def _result(self, result: PipelineResult) -> PipelineResult:
        updates: dict[str, Any] = {"branch": self._branch, "session_id": self._session_id}
        if self.options.keep_workspace and self._workspace_path is not None:
            updates["workspace_path"] = str(self._workspace_path)
        return replace(result, **updates)

    def _elapsed(self) -> float:
        return time.perf_counter() - self._start_time

    def _log(self, level: str, message: str, *args: object) -> None:
        getattr(logger, level)("[%s] " + message, self.ticket_id, *args)


class Pipeline(WorktreeRun):
    """Drives one ticket from FETCHING to a terminal result.

    The pipeline is strictly sequential. Fatal step failures become a FAILED
    result, tracker status updates are advisory, and ``run()`` never raises.
    A provisioned worktree is torn down exactly once when the run ends,
    unless ``keep_workspace`` is set.
    """

    def __init__(
        self,
        ticket_id: str,
        tracker: TaskTracker,
        git_manager: GitManager,
        provisioner: WorkspaceProvisioner,
        agent: AIAgent,
        test_runner: TestRunner | None = None,
        options: PipelineOptions | None = None,
        progress_callback: ProgressCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the pipeline.

        Args:
            ticket_id: Ticket to process, e.g. "IOS-1234".
            tracker: Task tracker holding the ticket.
            git_manager: GitManager for commits, pushes and PRs.
            provisioner: Creates and removes the ticket's worktree.
            agent: AI coding agent.
            test_runner: Runs the project's tests. Defaults to auto-detection.
            options: Run options.
            progress_callback: Called with (ticket_id, state) on each transition.
            sleep: Used to wait between agent retries.
        """
        super().__init__(
            ticket_id,
            git_manager,
            provisioner,
            agent,
            test_runner,
            options,
            progress_callback,
            sleep,
        )
        self.tracker = tracker

    def _run(self) -> PipelineResult:
        issue = self._fetch_issue()

        self._transition(PipelineState.MARKING_IN_PROGRESS)
        self._mark_status(IN_PROGRESS_STATUS)

        workspace = self._provision(self.options.base_branch)
        implementation = self._implement(issue, workspace)

        if self.options.skip_tests:
            self._log("info", "Skipping tests")
        else:
            self._test_and_fix(workspace)

        message = commit_message(issue.id, issue.title)
        if not self._commit(message, workspace, self.options.base_branch):
            self._log("warning", "No changes were made, not opening a PR")
            return self._result(PipelineResult.no_changes(self.ticket_id, self._elapsed()))

        pr = self._open_pr(issue, workspace, implementation.output)

        self._transition(PipelineState.MARKING_IN_REVIEW)
        self._update_issue(pr.url)
        self._mark_status(IN_REVIEW_STATUS)

        self._transition(PipelineState.SUCCEEDED)
        self._log("info", "PR created: %s", pr.url)
        return self._result(PipelineResult.succeeded(self.ticket_id, pr.url, self._elapsed()))

    def _fetch_issue(self) -> TaskIssue:
        self._transition(PipelineState.FETCHING)
        try:
            issue = self.tracker.fetch_issue(self.ticket_id)
        except IssueNotFoundError as e:
            raise PipelineFailure(ErrorKind.ISSUE_NOT_FOUND, str(e)) from e
        except TrackerError as e:
            raise PipelineFailure(ErrorKind.ISSUE_FETCH_FAILED, str(e)) from e
        self._log("info", "Fetched issue: %s", issue.title)
        return issue

    def _implement(self, issue: TaskIssue, workspace: Workspace) -> AgentResult:
        self._transition(PipelineState.IMPLEMENTING)
        prompt = build_task_prompt(issue, self.options.additional_context)
        self._log("info", "Running %s in %s", self.agent.name, workspace.path)
        result = self._ask_agent(self.agent.start, prompt, self._agent_context(workspace))
        self._log_changes(workspace)
        return result

    def _open_pr(self, issue: TaskIssue, workspace: Workspace, agent_output: str) -> PullRequestResult:
        self._transition(PipelineState.OPENING_PR)
        params = PullRequestParams(
            title=commit_message(issue.id, issue.title),
            body=build_pr_body(
                issue,
                self.tracker.issue_url(issue.id),
                agent_output,
                self.agent.name,
                session_id=self._session_id,
            ),
            branch=workspace.branch,
            base_branch=self.options.base_branch,
            draft=self.options.draft,
        )
        try:
            return self.git_manager.create_pull_request(params)
        except GitManagerError as e:
            raise PipelineFailure(ErrorKind.PR_CREATION_FAILED, str(e)) from e

    def _mark_status(self, status: str) -> None:
        """Move the ticket to ``status``; failures are only warnings."""
        try:
            self.tracker.change_status(self.ticket_id, status)
        except InvalidStatusError as e:
            self._log(
                "warning",
                "Could not move to '%s'. Available: %s",
                e.requested,
                ", ".join(e.available) or "(none)",
            )
        except TrackerError as e:
            self._log("warning", "Could not change status to '%s': %s", status, e)
        else:
            self._log("info", "Moved ticket to '%s'", status)

    def _update_issue(self, pr_url: str) -> None:
        try:
            self.tracker.update_issue(self.ticket_id, pr_url)
        except TrackerError as e:
            self._log("warning", "Could not link PR on the ticket: %s", e)
