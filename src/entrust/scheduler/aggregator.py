"""Result Aggregator - Thread-safe collection of pipeline results."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from entrust.orchestrator import ResultStatus
from entrust.scheduler.models import Summary

if TYPE_CHECKING:
    from entrust.orchestrator import PipelineResult

logger = logging.getLogger("entrust.scheduler.aggregator")

RULE = "-" * 40
CLEANUP_HINT = "Cleanup with: git worktree prune && rm -rf <workspace_root>/entrust-*"


class ResultAggregator:
    """Collects one terminal result per ticket from concurrent pipelines."""

    def __init__(self) -> None:
        self._results: dict[str, PipelineResult] = {}
        self._lock = threading.Lock()

    def record(self, ticket_id: str, result: PipelineResult) -> None:
        """Store the result for a ticket, replacing any earlier one."""
        with self._lock:
            if ticket_id in self._results:
                logger.warning("Overwriting earlier result for %s", ticket_id)
            self._results[ticket_id] = result

    def summary(self) -> Summary:
        """Snapshot the recorded results into a Summary."""
        with self._lock:
            results = dict(self._results)

        counts = {status: 0 for status in ResultStatus}
        for result in results.values():
            counts[result.status] += 1

        return Summary(
            results=results,
            succeeded=counts[ResultStatus.SUCCEEDED],
            failed=counts[ResultStatus.FAILED],
            no_changes=counts[ResultStatus.NO_CHANGES],
            total_duration=sum(r.duration_seconds for r in results.values()),
        )

    def render(self) -> str:
        """Human readable report of the recorded results."""
        return render_summary(self.summary())


def render_summary(summary: Summary) -> str:
    """Format a Summary as the final report printed by the CLI."""
    lines = [
        RULE,
        "Summary",
        RULE,
        f"Total:      {summary.total}",
        f"Successful: {summary.succeeded}",
        f"No changes: {summary.no_changes}",
        f"Failed:     {summary.failed}",
    ]

    by_status: dict[ResultStatus, list[PipelineResult]] = {status: [] for status in ResultStatus}
    for ticket_id in sorted(summary.results):
        result = summary.results[ticket_id]
        by_status[result.status].append(result)

    if by_status[ResultStatus.SUCCEEDED]:
        lines.extend(["", "Successful:"])
        lines.extend(
            f"  - {r.ticket_id} ({r.duration_seconds:.0f}s) - {r.pr_url}"
            for r in by_status[ResultStatus.SUCCEEDED]
        )

    if by_status[ResultStatus.NO_CHANGES]:
        lines.extend(["", "No changes:"])
        lines.extend(
            f"  - {r.ticket_id} ({r.duration_seconds:.0f}s)"
            for r in by_status[ResultStatus.NO_CHANGES]
        )

    if by_status[ResultStatus.FAILED]:
        lines.extend(["", "Failed:"])
        lines.extend(
            f"  - {r.ticket_id} ({r.duration_seconds:.0f}s) - [{r.error}] {r.message}"
            for r in by_status[ResultStatus.FAILED]
        )

    lines.extend(["", f"Total time: {summary.total_duration:.0f}s"])

    kept = [r.workspace_path for r in summary.results.values() if r.workspace_path]
    if kept:
        lines.extend(["", "Worktrees preserved for debugging:"])
        lines.extend(f"  - {path}" for path in sorted(kept))
        lines.extend(["", CLEANUP_HINT])

    return "\n".join(lines)
