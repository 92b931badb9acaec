"""Task trackers - JIRA and Linear adapters behind one protocol."""

from entrust.tracker.base import IN_PROGRESS_STATUS, IN_REVIEW_STATUS, TaskTracker
from entrust.tracker.exceptions import (
    InvalidStatusError,
    IssueFetchError,
    IssueNotFoundError,
    IssueUpdateError,
    StatusChangeError,
    StatusFetchError,
    TrackerError,
)
from entrust.tracker.jira import JIRATracker
from entrust.tracker.linear import LinearTracker
from entrust.tracker.models import IssueStatus, TaskIssue

__all__ = [
    "IN_PROGRESS_STATUS",
    "IN_REVIEW_STATUS",
    "InvalidStatusError",
    "IssueFetchError",
    "IssueNotFoundError",
    "IssueStatus",
    "IssueUpdateError",
    "JIRATracker",
    "LinearTracker",
    "StatusChangeError",
    "StatusFetchError",
    "TaskIssue",
    "TaskTracker",
    "TrackerError",
]
