"""Data models for the Orchestrator module."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class PipelineState(StrEnum):
    """Pipeline states, in the order they are entered."""

    FETCHING = "fetching"
    MARKING_IN_PROGRESS = "marking_in_progress"
    PROVISIONING = "provisioning"
    IMPLEMENTING = "implementing"
    TESTING = "testing"
    COMMITTING = "committing"
    OPENING_PR = "opening_pr"
    MARKING_IN_REVIEW = "marking_in_review"
    SUCCEEDED = "succeeded"


class ResultStatus(StrEnum):
    """Terminal outcome of a pipeline run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NO_CHANGES = "no_changes"


class ErrorKind(StrEnum):
    """Why a pipeline failed."""

    ISSUE_FETCH_FAILED = "issue_fetch_failed"
    ISSUE_NOT_FOUND = "issue_not_found"
    WORKSPACE_CREATION_FAILED = "workspace_creation_failed"
    AGENT_EXECUTION_FAILED = "agent_execution_failed"
    TESTS_EXHAUSTED = "tests_exhausted"
    PUSH_FAILED = "push_failed"
    PR_CREATION_FAILED = "pr_creation_failed"
    PROJECT_TYPE_UNKNOWN = "project_type_unknown"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class PipelineResult:
    """Terminal result of one ticket's pipeline.

    Attributes:
        ticket_id: The ticket the pipeline ran for.
        status: Succeeded, failed or no changes.
        duration_seconds: Wall-clock time of the run.
        pr_url: URL of the opened PR (succeeded only).
        error: Failure category (failed only).
        message: Human readable failure message (failed only).
        workspace_path: Worktree left on disk, when it was kept.
        branch: Branch the work was done on, once a worktree existed.
        session_id: Latest agent session handle, for follow-up turns.
    """

    ticket_id: str
    status: ResultStatus
    duration_seconds: float
    pr_url: str | None = None
    error: ErrorKind | None = None
    message: str | None = None
    workspace_path: str | None = None
    branch: str | None = None
    session_id: str | None = None

    @classmethod
    def succeeded(cls, ticket_id: str, pr_url: str, duration_seconds: float) -> PipelineResult:
        return cls(ticket_id, ResultStatus.SUCCEEDED, duration_seconds, pr_url=pr_url)

    @classmethod
    def failed(
        cls, ticket_id: str, error: ErrorKind, message: str, duration_seconds: float
    ) -> PipelineResult:
        return cls(ticket_id, ResultStatus.FAILED, duration_seconds, error=error, message=message)

    @classmethod
    def no_changes(cls, ticket_id: str, duration_seconds: float) -> PipelineResult:
        return cls(ticket_id, ResultStatus.NO_CHANGES, duration_seconds)

    @property
    def is_success(self) -> bool:
        """Whether the run counts as successful (no changes included)."""
        return self.status != ResultStatus.FAILED


@dataclass
class RetryState:
    """Bookkeeping for the test-and-fix loop of one pipeline run.

    Attributes:
        max_attempts: Maximum number of fix attempts.
        attempt: Fix attempts made so far.
        last_error: Output of the most recent failing test run.
    """

    max_attempts: int
    attempt: int = 0
    last_error: str | None = None

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts
