"""SessionStore - PR URL to agent session mapping kept in a JSON file."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from entrust.sessions.exceptions import SessionNotFoundError, SessionStoreError
from entrust.sessions.models import PRSession

logger = logging.getLogger("entrust.sessions")

DEFAULT_SESSIONS_PATH = Path("~/.entrust/pr-sessions.json")

_SESSIONS = TypeAdapter(dict[str, PRSession])


class SessionStore:
    """Persists one PRSession per pull request URL.

    The whole mapping lives in a single JSON file that is rewritten on every
    change (write to a temp file, then rename). A lock serializes
    read-modify-write cycles within the process.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        """Initialize the store.

        Args:
            path: JSON file holding the sessions. Defaults to
                ``~/.entrust/pr-sessions.json``.
        """
        self.path = Path(path or DEFAULT_SESSIONS_PATH).expanduser()
        self._lock = threading.Lock()

    def all(self) -> dict[str, PRSession]:
        """Return every stored session keyed by PR URL."""
        with self._lock:
            return self._load()

    def get(self, pr_url: str) -> PRSession | None:
        with self._lock:
            return self._load().get(_key(pr_url))

    def save(self, pr_url: str, session: PRSession) -> None:
        """Store ``session`` for ``pr_url``, replacing any previous entry."""
        with self._lock:
            sessions = self._load()
            sessions[_key(pr_url)] = session
            self._write(sessions)
        logger.debug("Saved session %s for %s", session.session_id, pr_url)

    def update(
        self,
        pr_url: str,
        session_id: str | None = None,
        processed_comment_ids: Iterable[int] = (),
    ) -> PRSession:
        """Record a follow-up turn: a newer session handle and handled comments.

        Raises:
            SessionNotFoundError: If nothing is stored for ``pr_url``.
        """
        with self._lock:
            sessions = self._load()
            current = sessions.get(_key(pr_url))
            if current is None:
                raise SessionNotFoundError(f"No session stored for {pr_url}")

            processed = list(current.processed_comment_ids)
            processed.extend(i for i in processed_comment_ids if i not in processed)
            updated = current.model_copy(
                update={
                    "session_id": session_id or current.session_id,
                    "processed_comment_ids": processed,
                }
            )
            sessions[_key(pr_url)] = updated
            self._write(sessions)
        return updated

    def _load(self) -> dict[str, PRSession]:
        if not self.path.exists():
            return {}
        try:
            return _SESSIONS.validate_json(self.path.read_bytes())
        except OSError as e:
            raise SessionStoreError(f"Cannot read {self.path}: {e}") from e
        except ValidationError as e:
            raise SessionStoreError(f"Corrupt session file {self.path}: {e}") from e

    def _write(self, sessions: dict[str, PRSession]) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(_SESSIONS.dump_json(sessions, indent=2))
            tmp_path.replace(self.path)
        except OSError as e:
            raise SessionStoreError(f"Cannot write {self.path}: {e}") from e


def _key(pr_url: str) -> str:
    return pr_url.strip().rstrip("/")
