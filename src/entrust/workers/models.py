"""Data models for workers."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_AGENT_TIMEOUT = 3600.0


@dataclass
class AgentContext:
    """Context for one agent invocation.

    Attributes:
        working_directory: Directory the agent works (and edits files) in.
        timeout: Seconds before the agent process is killed.
        environment: Extra environment variables for the agent process.
        log_callback: Receives each output line as it is produced.
    """

    working_directory: Path
    timeout: float = DEFAULT_AGENT_TIMEOUT
    environment: dict[str, str] = field(default_factory=dict)
    log_callback: Callable[[str], None] | None = None


@dataclass(frozen=True)
class AgentResult:
    """Result of an agent invocation.

    Attributes:
        output: Full collected agent output.
        session_id: Handle for continuing the conversation, if the agent
            provided one.
        duration_seconds: Wall-clock time of the invocation.
    """

    output: str
    session_id: str | None = None
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class ProjectType:
    """How to run tests for one kind of project."""

    name: str
    command: tuple[str, ...]
    failure_markers: tuple[str, ...] = ()


@dataclass(frozen=True)
class TestOutcome:
    """Result of one test run.

    Attributes:
        passed: Whether the run counts as passing.
        output: Combined stdout/stderr.
        command: The command that was executed.
        returncode: Exit code, or None if the run timed out.
        duration_seconds: Wall-clock time of the run.
    """

    __test__ = False  # not a pytest test class

    passed: bool
    output: str
    command: tuple[str, ...] = ()
    returncode: int | None = None
    duration_seconds: float = 0.0
