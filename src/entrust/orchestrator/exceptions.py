"""Exceptions for the Orchestrator module."""

from __future__ import annotations

from entrust.orchestrator.models import ErrorKind


class OrchestratorError(Exception):
    """Base exception for orchestrator errors."""


class PipelineFailure(OrchestratorError):
    """A fatal step failure, converted to a FAILED result at the pipeline boundary."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


class TestsExhaustedError(PipelineFailure):
    """Tests still fail and no further fix attempt is allowed."""

    __test__ = False  # not a pytest test class

    def __init__(self, attempts: int, output: str) -> None:
        super().__init__(
            ErrorKind.TESTS_EXHAUSTED,
            f"Tests failed after {attempts} fix attempt(s)",
        )
        self.attempts = attempts
        self.output = output
