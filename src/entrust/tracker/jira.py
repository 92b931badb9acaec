"""JIRATracker - JIRA Cloud issues over the REST API (v3)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from entrust.tracker.base import find_status, pr_comment, response_json
from entrust.tracker.exceptions import (
    InvalidStatusError,
    IssueFetchError,
    IssueNotFoundError,
    IssueUpdateError,
    StatusChangeError,
    StatusFetchError,
)
from entrust.tracker.models import IssueStatus, TaskIssue

logger = logging.getLogger("entrust.tracker.jira")


def adf_to_text(node: Any) -> str:
    """Flatten an Atlassian Document Format node into plain text.

    Block nodes (paragraphs, headings, list items) are separated by newlines.
    Plain strings are returned unchanged, so descriptions from older
    instances that still send text work too.
    """
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return "\n".join(part for part in (adf_to_text(child) for child in node) if part)

    if node.get("type") == "text":
        return str(node.get("text", ""))
    if node.get("type") == "hardBreak":
        return "\n"

    children = node.get("content") or []
    if node.get("type") in ("doc", "bulletList", "orderedList"):
        return adf_to_text(children)
    return "".join(adf_to_text(child) for child in children)


class JIRATracker:
    """Adapter for JIRA Cloud issues.

    Statuses are JIRA transitions: moving an issue means executing the
    transition whose name matches the requested status.
    """

    def __init__(self, url: str, email: str, token: str) -> None:
        """Initialize JIRA tracker.

        Args:
            url: JIRA site URL, e.g. "https://acme.atlassian.net"
            email: Account email used for basic auth
            token: JIRA API token
        """
        self.url = url.rstrip("/")
        self.email = email
        self.token = token
        self._client: httpx.Client | None = None

    @property
    def base_url(self) -> str:
        return self.url

    def issue_url(self, issue_id: str) -> str:
        return f"{self.url}/browse/{issue_id}"

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client for the JIRA REST API."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=f"{self.url}/rest/api/3",
                auth=(self.email, self.token),
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
                timeout=30.0,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def fetch_issue(self, issue_id: str) -> TaskIssue:
        """Fetch an issue by key.

        Raises:
            IssueNotFoundError: If JIRA answers 404
            IssueFetchError: On any other failure
        """
        logger.debug("Fetching JIRA issue %s", issue_id)
        try:
            response = self.client.get(
                f"/issue/{issue_id}", params={"fields": "summary,description"}
            )
        except httpx.HTTPError as e:
            raise IssueFetchError(f"Failed to fetch issue {issue_id}: {e}") from e

        if response.status_code == 404:
            raise IssueNotFoundError(f"Issue {issue_id} not found")
        if response.status_code != 200:
            raise IssueFetchError(
                f"Failed to fetch issue {issue_id}: {response.status_code} - {response.text}"
            )

        data = response_json(response, IssueFetchError, f"Failed to fetch issue {issue_id}")
        try:
            fields = data.get("fields") or {}
            return TaskIssue(
                id=data["key"],
                title=fields.get("summary") or "",
                description=adf_to_text(fields.get("description")) or None,
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise IssueFetchError(f"Malformed issue {issue_id} in JIRA response: {e!r}") from e

    def get_available_statuses(self, issue_id: str) -> list[IssueStatus]:
        """List the transitions currently available for an issue."""
        try:
            response = self.client.get(f"/issue/{issue_id}/transitions")
        except httpx.HTTPError as e:
            raise StatusFetchError(f"Failed to fetch transitions for {issue_id}: {e}") from e

        if response.status_code != 200:
            raise StatusFetchError(
                f"Failed to fetch transitions for {issue_id}: "
                f"{response.status_code} - {response.text}"
            )

        data = response_json(
            response, StatusFetchError, f"Failed to fetch transitions for {issue_id}"
        )
        try:
            return [
                IssueStatus(id=str(transition["id"]), name=transition["name"])
                for transition in data.get("transitions") or []
            ]
        except (KeyError, TypeError) as e:
            raise StatusFetchError(f"Malformed transitions for {issue_id}: {e!r}") from e

    def change_status(self, issue_id: str, status: str) -> None:
        """Execute the transition named ``status``.

        Raises:
            InvalidStatusError: If no such transition is available
            StatusChangeError: If the transition request fails
        """
        statuses = self.get_available_statuses(issue_id)
        target = find_status(statuses, status)
        if target is None:
            raise InvalidStatusError(status, [s.name for s in statuses])

        try:
            response = self.client.post(
                f"/issue/{issue_id}/transitions",
                json={"transition": {"id": target.id}},
            )
        except httpx.HTTPError as e:
            raise StatusChangeError(f"Failed to move {issue_id} to '{status}': {e}") from e

        if response.status_code not in (200, 204):
            raise StatusChangeError(
                f"Failed to move {issue_id} to '{status}': "
                f"{response.status_code} - {response.text}"
            )
        logger.info("Moved %s to '%s'", issue_id, target.name)

    def update_issue(self, issue_id: str, pr_url: str) -> None:
        """Comment the PR link on the issue."""
        body = {
            "body": {
                "type": "doc",
                "version": 1,
                "content": [
                    {
                        "type": "paragraph",
                        "content": [{"type": "text", "text": pr_comment(pr_url)}],
                    }
                ],
            }
        }
        try:
            response = self.client.post(f"/issue/{issue_id}/comment", json=body)
        except httpx.HTTPError as e:
            raise IssueUpdateError(f"Failed to comment on {issue_id}: {e}") from e

        if response.status_code not in (200, 201):
            raise IssueUpdateError(
                f"Failed to comment on {issue_id}: {response.status_code} - {response.text}"
            )
