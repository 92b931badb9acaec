"""Data models for task trackers."""

from dataclasses import dataclass


@dataclass(frozen=True)
class TaskIssue:
    """Snapshot of a tracker issue, fetched once per pipeline run."""

    id: str
    title: str
    description: str | None = None


@dataclass(frozen=True)
class IssueStatus:
    """A status (JIRA transition or Linear workflow state) an issue can move to."""

    id: str
    name: str
    description: str | None = None
