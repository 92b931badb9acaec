"""Workers package for entrust.

Contains the AI agent session and the test runner used by the pipeline.
"""

from entrust.workers.agent import AIAgent, ClaudeCodeAgent
from entrust.workers.exceptions import (
    AgentExecutionError,
    ProjectTypeUnknownError,
    SessionNotContinuableError,
    WorkerError,
)
from entrust.workers.models import AgentContext, AgentResult, ProjectType, TestOutcome
from entrust.workers.testing import TestRunner

__all__ = [
    "AIAgent",
    "AgentContext",
    "AgentExecutionError",
    "AgentResult",
    "ClaudeCodeAgent",
    "ProjectType",
    "ProjectTypeUnknownError",
    "SessionNotContinuableError",
    "TestOutcome",
    "TestRunner",
    "WorkerError",
]
