"""Exceptions for workers (agent sessions and test runs)."""

from __future__ import annotations


class WorkerError(Exception):
    """Base exception for worker errors."""


class AgentExecutionError(WorkerError):
    """The agent process failed to launch, exited non-zero, or timed out.

    Attributes:
        retryable: Whether trying the same call again may succeed.
        retry_after: Suggested delay in seconds before retrying, if known.
    """

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        retry_after: float | None = None,
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.retry_after = retry_after
        self.output = output


class SessionNotContinuableError(AgentExecutionError):
    """The agent cannot resume the given session."""

    def __init__(self, session_id: str, output: str = "") -> None:
        super().__init__(f"Session {session_id} cannot be continued", output=output)
        self.session_id = session_id


class ProjectTypeUnknownError(WorkerError):
    """No way to run tests could be determined for a directory."""
