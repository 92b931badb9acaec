"""Custom exceptions for task trackers."""


class TrackerError(Exception):
    """Base exception for task tracker errors."""


class IssueFetchError(TrackerError):
    """Issue could not be fetched (network, auth, or API error)."""


class IssueNotFoundError(TrackerError):
    """Issue with the given ID does not exist."""


class IssueUpdateError(TrackerError):
    """Issue could not be updated (e.g. commenting the PR link)."""


class StatusFetchError(TrackerError):
    """Available statuses could not be fetched."""


class StatusChangeError(TrackerError):
    """Status transition request failed."""


class InvalidStatusError(TrackerError):
    """Requested status does not exist for this issue."""

    def __init__(self, requested: str, available: list[str]) -> None:
        self.requested = requested
        self.available = available
        super().__init__(f"Invalid status '{requested}'. Available: {', '.join(available)}")
