"""Data models for the Scheduler module."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from entrust.orchestrator import PipelineResult


@dataclass(frozen=True)
class Summary:
    """Aggregate outcome of a batch of pipelines.

    Attributes:
        results: Terminal result per ticket.
        succeeded: Number of tickets that opened a PR.
        failed: Number of failed tickets.
        no_changes: Number of tickets that produced nothing to commit.
        total_duration: Sum of per-ticket durations in seconds. Pipelines run
            concurrently, so this is usually larger than wall-clock time.
    """

    results: dict[str, PipelineResult] = field(default_factory=dict)
    succeeded: int = 0
    failed: int = 0
    no_changes: int = 0
    total_duration: float = 0.0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def all_succeeded(self) -> bool:
        """True when no ticket failed. NO_CHANGES counts as success."""
        return self.failed == 0
