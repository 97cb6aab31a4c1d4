from __future__ import annotations

import enum
import itertools
import logging
import queue
import threading
import time
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .transport import LineTransport


log = logging.getLogger("linechat.session")

_session_ids = itertools.count(1)


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    DISCONNECTING = "disconnecting"
    CLOSED = "closed"


class Outbound(Protocol):
    def deliver(self, line: str) -> bool: ...

    def close(self, timeout: float | None = None) -> None: ...


class Session:
    """
    One connected participant that has completed the name handshake.

    The display name is fixed at creation. The outbound sink is owned by the
    session and is the only way to reach the participant's transport.
    """

    def __init__(
        self,
        display_name: str,
        outbound: Outbound,
        *,
        peer: str = "-",
        session_id: int | None = None,
    ) -> None:
        if not display_name:
            raise ValueError("display name must not be empty")
        self._id = next(_session_ids) if session_id is None else int(session_id)
        self._display_name = display_name
        self.outbound = outbound
        self.peer = peer
        self.joined_at = time.time()

    @property
    def id(self) -> int:
        return self._id

    @property
    def display_name(self) -> str:
        return self._display_name

    def send(self, line: str) -> bool:
        """Hand one wire line to the transport. False if it was not accepted."""
        return self.outbound.deliver(line)

    def __repr__(self) -> str:
        return f"Session(id={self._id}, name={self._display_name!r}, peer={self.peer})"


_STOP = object()


class QueuedOutbound:
    """
    Bounded per-recipient buffer drained by a dedicated writer thread.

    ``deliver`` never blocks: a full buffer (slow consumer) or a writer that
    already failed reports a delivery failure. FIFO draining keeps the order
    in which lines were produced for this recipient.
    """

    def __init__(
        self,
        transport: LineTransport,
        *,
        maxsize: int = 256,
        name: str = "linechat-writer",
    ) -> None:
        self._transport = transport
        self._queue: queue.Queue = queue.Queue(maxsize=max(1, int(maxsize)))
        self._dead = threading.Event()
        self._closing = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    @property
    def alive(self) -> bool:
        return not (self._dead.is_set() or self._closing.is_set())

    def deliver(self, line: str) -> bool:
        if not self.alive:
            return False
        try:
            self._queue.put_nowait(line)
        except queue.Full:
            return False
        return True

    def _run(self) -> None:
        while True:
            try:
                item = self._queue.get(timeout=0.25)
            except queue.Empty:
                if self._closing.is_set():
                    return
                continue

            if item is _STOP:
                return
            if self._dead.is_set():
                # Drain without writing so close() can finish.
                continue

            try:
                self._transport.write_line(item)
            except (OSError, ValueError) as e:
                self._dead.set()
                log.info(
                    "Write failed peer=%s err=%s",
                    getattr(self._transport, "peer", "-"),
                    e,
                )

    def close(self, timeout: float | None = None) -> None:
        """Flush queued lines (bounded by ``timeout``), then close the transport."""
        if self._closing.is_set():
            return
        self._closing.set()

        try:
            self._queue.put_nowait(_STOP)
        except queue.Full:
            pass

        self._thread.join(timeout)

        try:
            self._transport.close()
        except Exception:
            log.debug("Transport close failed", exc_info=True)

        if self._thread.is_alive():
            # A stuck write fails fast once the transport is closed.
            self._thread.join(1.0)
