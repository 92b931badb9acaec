"""Orchestrator package - the per-ticket pipeline state machine."""

from entrust.orchestrator.exceptions import (
    OrchestratorError,
    PipelineFailure,
    TestsExhaustedError,
)
from entrust.orchestrator.followup import FollowUp
from entrust.orchestrator.models import (
    ErrorKind,
    PipelineResult,
    PipelineState,
    ResultStatus,
    RetryState,
)
from entrust.orchestrator.pipeline import (
    Pipeline,
    PipelineOptions,
    ProgressCallback,
    WorktreeRun,
)
from entrust.orchestrator.prompts import (
    actionable_comments,
    build_feedback_prompt,
    build_fix_prompt,
    build_pr_body,
    build_task_prompt,
    extract_section,
    extract_session_id,
)

__all__ = [
    "ErrorKind",
    "FollowUp",
    "OrchestratorError",
    "Pipeline",
    "PipelineFailure",
    "PipelineOptions",
    "PipelineResult",
    "PipelineState",
    "ProgressCallback",
    "ResultStatus",
    "RetryState",
    "TestsExhaustedError",
    "WorktreeRun",
    "actionable_comments",
    "build_feedback_prompt",
    "build_fix_prompt",
    "build_pr_body",
    "build_task_prompt",
    "extract_section",
    "extract_session_id",
]
