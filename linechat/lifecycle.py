from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from .config import ChatServerConfig
from .constants import (
    JOIN_CONFIRM_TEMPLATE,
    JOINED_TEMPLATE,
    LEFT_TEMPLATE,
    NAME_PROMPT,
    WELCOME_BANNER,
)
from .registry import DuplicateSession
from .router import RouteResult
from .session import Outbound, QueuedOutbound, Session, SessionState
from .util import normalize_name, placeholder_name, sanitize_line

if TYPE_CHECKING:
    from .registry import SessionRegistry
    from .router import MessageRouter
    from .stats import StatsManager
    from .transport import LineTransport


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CONNECTING: frozenset({SessionState.HANDSHAKING, SessionState.DISCONNECTING}),
    SessionState.HANDSHAKING: frozenset({SessionState.ACTIVE, SessionState.DISCONNECTING}),
    SessionState.ACTIVE: frozenset({SessionState.DISCONNECTING}),
    SessionState.DISCONNECTING: frozenset({SessionState.CLOSED}),
    SessionState.CLOSED: frozenset(),
}


class SessionController:
    """
    Drives one connection from handshake to close.

    CONNECTING -> HANDSHAKING -> ACTIVE -> DISCONNECTING -> CLOSED

    ``run`` blocks the calling worker thread for the life of the connection.
    Teardown always runs, exactly once: the session leaves the registry,
    remaining participants get a departure notice (only if a name was ever
    assigned) and the transport is closed.
    """

    def __init__(
        self,
        transport: LineTransport,
        registry: SessionRegistry,
        router: MessageRouter,
        *,
        config: ChatServerConfig | None = None,
        stats: StatsManager | None = None,
        outbound_factory: Callable[[LineTransport], Outbound] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.transport = transport
        self.registry = registry
        self.router = router
        self.config = config or ChatServerConfig()
        self.stats = stats
        self.log = logging.getLogger("linechat.session")
        self._outbound_factory = outbound_factory or self._queued_outbound
        self._rng = rng
        self._state_lock = threading.Lock()
        self._state = SessionState.CONNECTING
        self._closing = threading.Event()
        self._session: Session | None = None
        self._outbound: Outbound | None = None

    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    def _queued_outbound(self, transport: LineTransport) -> Outbound:
        return QueuedOutbound(
            transport,
            maxsize=self.config.outbound_queue_size,
            name=f"linechat-writer-{transport.peer}",
        )

    def _inc(self, key: str, delta: int = 1) -> None:
        if self.stats is not None:
            self.stats.inc(key, delta)

    def _transition(self, new: SessionState) -> None:
        with self._state_lock:
            old = self._state
            if new not in _TRANSITIONS[old]:
                raise RuntimeError(f"invalid session transition {old.name} -> {new.name}")
            self._state = new
        self.log.debug("State %s -> %s peer=%s", old.name, new.name, self.transport.peer)

    def run(self) -> None:
        with self._state_lock:
            if self._state is not SessionState.CONNECTING:
                raise RuntimeError("session controller can only run once")

        try:
            self._handshake()
            self._serve()
        except DuplicateSession:
            # Already logged by the registry; the existing entry is untouched.
            pass
        except (OSError, ValueError) as e:
            name = self._session.display_name if self._session else None
            self.log.info(
                "Connection error peer=%s name=%r err=%s", self.transport.peer, name, e
            )
        except Exception:
            self.log.exception("Session worker failed peer=%s", self.transport.peer)
        finally:
            self._teardown()

    def close(self) -> None:
        """Force the connection closed from another thread (server shutdown)."""
        self._closing.set()
        try:
            self.transport.close()
        except Exception:
            self.log.debug("Transport close failed peer=%s", self.transport.peer, exc_info=True)

    def _handshake(self) -> None:
        self._transition(SessionState.HANDSHAKING)

        for line in WELCOME_BANNER:
            self.transport.write_line(line)
        self.transport.write_line(NAME_PROMPT)

        raw = self.transport.read_line()
        if self._closing.is_set():
            # Server shutdown interrupted the handshake; never register.
            return
        name = normalize_name(raw) or placeholder_name(self._rng)

        self._outbound = self._outbound_factory(self.transport)
        session = Session(name, self._outbound, peer=self.transport.peer)

        self.registry.add(session)
        self._session = session
        self._transition(SessionState.ACTIVE)
        self._inc("joins")

        self.log.info(
            "Client connected name=%r session_id=%s peer=%s",
            session.display_name,
            session.id,
            session.peer,
        )

        self.router.broadcast(JOINED_TEMPLATE.format(name=session.display_name))
        session.send(JOIN_CONFIRM_TEMPLATE.format(name=session.display_name))

    def _serve(self) -> None:
        session = self._session
        if session is None:
            return

        while not self._closing.is_set():
            line = self.transport.read_line()
            if line is None:
                self.log.debug("End of stream name=%r peer=%s", session.display_name, session.peer)
                break

            text = sanitize_line(line).strip()
            if not text:
                continue

            self._inc("lines_in")
            self.log.info("[%s]: %s", session.display_name, text)

            if self.router.route_line(session, text) is RouteResult.QUIT:
                break

    def _teardown(self) -> None:
        was_active = self.state is SessionState.ACTIVE
        self._transition(SessionState.DISCONNECTING)

        session = self._session
        if session is not None:
            self.registry.remove(session)

        if was_active and session is not None:
            self._inc("leaves")
            self.router.broadcast(LEFT_TEMPLATE.format(name=session.display_name))
            self.log.info(
                "%s disconnected session_id=%s active_clients=%s",
                session.display_name,
                session.id,
                self.registry.count(),
            )

        try:
            if self._outbound is not None:
                self._outbound.close(self.config.send_timeout_s)
            else:
                self.transport.close()
        except Exception:
            self.log.debug("Close failed peer=%s", self.transport.peer, exc_info=True)

        self._transition(SessionState.CLOSED)
