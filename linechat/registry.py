from __future__ import annotations

import logging
import threading
from collections.abc import Iterator

from .session import Session
from .util import name_key


class DuplicateSession(RuntimeError):
    """Raised when a session id that is already registered is added again."""

    def __init__(self, session: Session) -> None:
        super().__init__(f"session {session.id} is already registered")
        self.session = session


class SessionRegistry:
    """
    The set of live sessions, shared by every connection worker.

    This class is responsible for:
    - Adding and removing sessions as connections join and leave
    - Point-in-time snapshots for broadcast fan-out and listings
    - Case-insensitive lookup by display name

    Every operation takes the registry lock for the duration of a dict
    operation only. Snapshots are immutable tuples, so callers iterate and
    deliver without holding the lock.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("linechat.registry")
        self._lock = threading.RLock()
        # Insertion ordered: enumeration and name ties follow join order.
        self._sessions: dict[int, Session] = {}

    def add(self, session: Session) -> None:
        with self._lock:
            if session.id in self._sessions:
                self.log.error(
                    "Rejected duplicate add session_id=%s name=%r",
                    session.id,
                    session.display_name,
                )
                raise DuplicateSession(session)
            self._sessions[session.id] = session
            size = len(self._sessions)

        self.log.debug(
            "Added session_id=%s name=%r size=%s", session.id, session.display_name, size
        )

    def remove(self, session: Session) -> bool:
        """Remove ``session`` if present. Returns False if it was already gone."""
        with self._lock:
            current = self._sessions.get(session.id)
            if current is not session:
                return False
            del self._sessions[session.id]
            size = len(self._sessions)

        self.log.debug(
            "Removed session_id=%s name=%r size=%s", session.id, session.display_name, size
        )
        return True

    def snapshot(self) -> tuple[Session, ...]:
        with self._lock:
            return tuple(self._sessions.values())

    def __iter__(self) -> Iterator[Session]:
        return iter(self.snapshot())

    def find_by_name(self, name: str) -> Session | None:
        key = name_key(name)
        with self._lock:
            for session in self._sessions.values():
                if name_key(session.display_name) == key:
                    return session
        return None

    def get(self, session_id: int) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def __contains__(self, session: object) -> bool:
        if not isinstance(session, Session):
            return False
        with self._lock:
            return self._sessions.get(session.id) is session

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __len__(self) -> int:
        return self.count()

    def clear_all(self) -> list[Session]:
        """Remove every session and return them for teardown."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        return sessions
