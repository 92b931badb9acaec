"""PR sessions - the agent conversation behind each opened pull request."""

from entrust.sessions.exceptions import SessionNotFoundError, SessionStoreError
from entrust.sessions.models import PRSession
from entrust.sessions.store import DEFAULT_SESSIONS_PATH, SessionStore

__all__ = [
    "DEFAULT_SESSIONS_PATH",
    "PRSession",
    "SessionNotFoundError",
    "SessionStore",
    "SessionStoreError",
]
