"""Scheduler - Runs ticket pipelines concurrently with a bounded window."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Protocol

from entrust.orchestrator import ErrorKind, PipelineResult
from entrust.scheduler.aggregator import ResultAggregator

if TYPE_CHECKING:
    from entrust.scheduler.models import Summary

logger = logging.getLogger("entrust.scheduler")


class Runnable(Protocol):
    """Anything that runs one ticket to a terminal result."""

    def run(self) -> PipelineResult: ...


PipelineFactory = Callable[[str], Runnable]
ResultCallback = Callable[[str, PipelineResult], None]


class Scheduler:
    """Runs one pipeline per ticket, at most ``max_concurrent`` at a time.

    Works as a sliding window: as soon as a pipeline reaches a terminal state
    its slot starts the next queued ticket. Every ticket ends up with exactly
    one result, even when its pipeline (or the factory building it) raises.
    """

    def __init__(
        self,
        max_concurrent: int,
        pipeline_factory: PipelineFactory,
        aggregator: ResultAggregator | None = None,
        on_result: ResultCallback | None = None,
    ) -> None:
        """Initialize the Scheduler.

        Args:
            max_concurrent: Maximum number of pipelines running at once.
            pipeline_factory: Builds the pipeline for a ticket.
            aggregator: Collects results. A fresh one is used by default.
            on_result: Called on the calling thread as each ticket finishes.

        Raises:
            ValueError: If max_concurrent is less than 1.
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self.pipeline_factory = pipeline_factory
        self.aggregator = aggregator or ResultAggregator()
        self.on_result = on_result

        self._lock = threading.Lock()
        self._active = 0
        self._peak_active = 0

    @property
    def active(self) -> int:
        """Number of pipelines currently running."""
        with self._lock:
            return self._active

    @property
    def peak_active(self) -> int:
        """Highest number of pipelines that ran at the same time."""
        with self._lock:
            return self._peak_active

    def execute(self, tickets: Iterable[str]) -> Summary:
        """Run every ticket's pipeline and wait for all of them.

        Args:
            tickets: Ticket IDs, started in order.

        Returns:
            Summary of all results.
        """
        queue = deque(tickets)
        logger.info(
            "Processing %d ticket(s) with max concurrency %d", len(queue), self.max_concurrent
        )

        with ThreadPoolExecutor(
            max_workers=self.max_concurrent, thread_name_prefix="entrust-pipeline"
        ) as executor:
            running: dict[Future[PipelineResult], str] = {}
            while queue or running:
                while queue and len(running) < self.max_concurrent:
                    ticket_id = queue.popleft()
                    logger.debug("Starting %s (%d queued)", ticket_id, len(queue))
                    running[executor.submit(self._run_one, ticket_id)] = ticket_id

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    ticket_id = running.pop(future)
                    result = future.result()
                    logger.info("%s finished: %s", ticket_id, result.status)
                    if self.on_result is not None:
                        self.on_result(ticket_id, result)

        summary = self.aggregator.summary()
        logger.info(
            "All pipelines done: %d succeeded, %d no changes, %d failed (peak concurrency %d)",
            summary.succeeded,
            summary.no_changes,
            summary.failed,
            self.peak_active,
        )
        return summary

    def _run_one(self, ticket_id: str) -> PipelineResult:
        start_time = time.perf_counter()
        with self._lock:
            self._active += 1
            self._peak_active = max(self._peak_active, self._active)
        try:
            try:
                result = self.pipeline_factory(ticket_id).run()
            except Exception as e:
                logger.exception("[%s] Pipeline raised", ticket_id)
                result = PipelineResult.failed(
                    ticket_id,
                    ErrorKind.UNEXPECTED,
                    f"Pipeline raised: {e}",
                    time.perf_counter() - start_time,
                )
            self.aggregator.record(ticket_id, result)
            return result
        finally:
            with self._lock:
                self._active -= 1
