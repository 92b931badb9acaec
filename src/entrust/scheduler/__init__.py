"""Scheduler - Bounded concurrent execution of ticket pipelines."""

from entrust.scheduler.aggregator import ResultAggregator, render_summary
from entrust.scheduler.models import Summary
from entrust.scheduler.scheduler import PipelineFactory, Scheduler

__all__ = [
    "PipelineFactory",
    "ResultAggregator",
    "Scheduler",
    "Summary",
    "render_summary",
]
