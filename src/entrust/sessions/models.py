"""Data models for PR sessions."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


class PRSession(BaseModel):
    """Everything needed to pick up the agent conversation behind a PR.

    Attributes:
        session_id: Agent session handle of the latest conversation turn.
        ticket_id: Ticket the PR implements.
        branch: PR head branch.
        created_at: When the PR was opened.
        skip_tests: Whether the original run skipped tests.
        processed_comment_ids: Review comments already handed to the agent.
    """

    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(..., min_length=1)
    ticket_id: str = Field(..., min_length=1)
    branch: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    skip_tests: bool = False
    processed_comment_ids: list[int] = Field(default_factory=list)
