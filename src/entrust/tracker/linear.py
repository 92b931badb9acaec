"""LinearTracker - Linear issues over the GraphQL API."""

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
    TrackerError,
)
from entrust.tracker.models import IssueStatus, TaskIssue

logger = logging.getLogger("entrust.tracker.linear")

ISSUE_QUERY = """
query Issue($id: String!) {
    issue(id: $id) {
        id
        identifier
        title
        description
    }
}
"""

STATES_QUERY = """
query IssueStates($id: String!) {
    issue(id: $id) {
        team {
            states {
                nodes {
                    id
                    name
                    description
                }
            }
        }
    }
}
"""

ISSUE_UPDATE_MUTATION = """
mutation IssueUpdate($issueId: String!, $stateId: String!) {
    issueUpdate(id: $issueId, input: {stateId: $stateId}) {
        success
    }
}
"""

COMMENT_CREATE_MUTATION = """
mutation CommentCreate($issueId: String!, $body: String!) {
    commentCreate(input: {issueId: $issueId, body: $body}) {
        success
    }
}
"""


class LinearTracker:
    """Adapter for Linear issues.

    Uses the Linear GraphQL API. Linear accepts either the issue UUID or its
    human identifier (e.g. "PRO-123") wherever an issue id is expected.
    """

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.linear.app/graphql",
        web_url: str = "https://linear.app",
    ) -> None:
        """Initialize Linear tracker.

        Args:
            token: Linear personal API key
            api_url: GraphQL endpoint (for testing)
            web_url: Base URL used for human-facing issue links
        """
        self.token = token
        self.api_url = api_url
        self.web_url = web_url.rstrip("/")
        self._client: httpx.Client | None = None

    @property
    def base_url(self) -> str:
        return self.web_url

    def issue_url(self, issue_id: str) -> str:
        return f"{self.web_url}/issue/{issue_id}"

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client for GraphQL API."""
        if self._client is None:
            self._client = httpx.Client(
                headers={
                    "Authorization": self.token,
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

    def _graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute a GraphQL query.

        Args:
            query: GraphQL query string
            variables: Query variables

        Returns:
            Response data

        Raises:
            TrackerError: If the request or the query fails
        """
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            response = self.client.post(self.api_url, json=payload)
        except httpx.HTTPError as e:
            raise TrackerError(f"Linear request failed: {e}") from e

        if response.status_code != 200:
            raise TrackerError(f"GraphQL request failed: {response.status_code} - {response.text}")

        data = response_json(response, TrackerError, "GraphQL request failed")
        if data.get("errors"):
            messages = ", ".join(
                err.get("message", str(err)) if isinstance(err, dict) else str(err)
                for err in data["errors"]
            )
            raise TrackerError(f"GraphQL errors: {messages}")

        result = data.get("data") or {}
        if not isinstance(result, dict):
            raise TrackerError(f"GraphQL response data is not an object: {result!r}")
        return result

    def fetch_issue(self, issue_id: str) -> TaskIssue:
        """Fetch an issue by ID or identifier.

        Raises:
            IssueNotFoundError: If Linear has no such issue
            IssueFetchError: If the request fails
        """
        logger.debug("Fetching Linear issue %s", issue_id)
        try:
            data = self._graphql(ISSUE_QUERY, {"id": issue_id})
        except TrackerError as e:
            if "not found" in str(e).lower():
                raise IssueNotFoundError(f"Issue {issue_id} not found") from e
            raise IssueFetchError(f"Failed to fetch issue {issue_id}: {e}") from e

        issue = data.get("issue")
        if not issue:
            raise IssueNotFoundError(f"Issue {issue_id} not found")

        try:
            return TaskIssue(
                id=issue["identifier"],
                title=issue["title"],
                description=issue.get("description"),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise IssueFetchError(f"Malformed issue {issue_id} in Linear response: {e!r}") from e

    def get_available_statuses(self, issue_id: str) -> list[IssueStatus]:
        """List the workflow states of the issue's team."""
        try:
            data = self._graphql(STATES_QUERY, {"id": issue_id})
        except TrackerError as e:
            raise StatusFetchError(f"Failed to fetch statuses for {issue_id}: {e}") from e

        issue = data.get("issue")
        if not issue:
            raise IssueNotFoundError(f"Issue {issue_id} not found")

        try:
            nodes = ((issue.get("team") or {}).get("states") or {}).get("nodes") or []
            return [
                IssueStatus(id=node["id"], name=node["name"], description=node.get("description"))
                for node in nodes
            ]
        except (KeyError, TypeError, AttributeError) as e:
            raise StatusFetchError(f"Malformed workflow states for {issue_id}: {e!r}") from e

    def change_status(self, issue_id: str, status: str) -> None:
        """Move an issue to the workflow state named ``status``.

        Raises:
            InvalidStatusError: If the team has no state with that name
            StatusChangeError: If the update fails
        """
        statuses = self.get_available_statuses(issue_id)
        target = find_status(statuses, status)
        if target is None:
            raise InvalidStatusError(status, [s.name for s in statuses])

        try:
            data = self._graphql(ISSUE_UPDATE_MUTATION, {"issueId": issue_id, "stateId": target.id})
        except TrackerError as e:
            raise StatusChangeError(f"Failed to move {issue_id} to '{status}': {e}") from e

        if not (data.get("issueUpdate") or {}).get("success"):
            raise StatusChangeError(f"Linear refused to move {issue_id} to '{status}'")
        logger.info("Moved %s to '%s'", issue_id, target.name)

    def update_issue(self, issue_id: str, pr_url: str) -> None:
        """Comment the PR link on the issue."""
        try:
            data = self._graphql(
                COMMENT_CREATE_MUTATION,
                {"issueId": issue_id, "body": pr_comment(pr_url)},
            )
        except TrackerError as e:
            raise IssueUpdateError(f"Failed to comment on {issue_id}: {e}") from e

        if not (data.get("commentCreate") or {}).get("success"):
            raise IssueUpdateError(f"Linear refused the comment on {issue_id}")
