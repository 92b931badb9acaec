"""Custom exceptions for the PR session store."""


class SessionStoreError(Exception):
    """The session file cannot be read or written."""


class SessionNotFoundError(SessionStoreError):
    """No session is stored for the given pull request."""
