"""TaskTracker protocol shared by all tracker adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    import httpx

    from entrust.tracker.exceptions import TrackerError
    from entrust.tracker.models import IssueStatus, TaskIssue

IN_PROGRESS_STATUS = "In Progress"
IN_REVIEW_STATUS = "In Review"


class TaskTracker(Protocol):
    """Operations the pipeline needs from a task tracker."""

    @property
    def base_url(self) -> str: ...

    def issue_url(self, issue_id: str) -> str: ...

    def fetch_issue(self, issue_id: str) -> TaskIssue: ...

    def get_available_statuses(self, issue_id: str) -> list[IssueStatus]: ...

    def change_status(self, issue_id: str, status: str) -> None: ...

    def update_issue(self, issue_id: str, pr_url: str) -> None: ...

    def close(self) -> None: ...


def find_status(statuses: list[IssueStatus], name: str) -> IssueStatus | None:
    """Find a status by name, case-insensitively."""
    wanted = name.lower()
    for status in statuses:
        if status.name.lower() == wanted:
            return status
    return None


def pr_comment(pr_url: str) -> str:
    """Comment text posted on an issue once its PR exists."""
    return f"Automated PR created: {pr_url}"


def response_json(
    response: httpx.Response, error: type[TrackerError], context: str
) -> dict[str, Any]:
    """Decode a JSON object body, raising ``error`` when the body is not one.

    Trackers behind proxies or in maintenance answer 200 with HTML now and
    then; callers treat that like any other failed request.
    """
    try:
        data = response.json()
    except ValueError as e:
        raise error(f"{context}: response is not JSON ({e})") from e
    if not isinstance(data, dict):
        raise error(f"{context}: expected a JSON object, got {type(data).__name__}")
    return data
