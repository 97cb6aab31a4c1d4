"""Line-oriented stream transport for one client connection."""

from __future__ import annotations

import codecs
import logging
import select
import socket
import threading
import time
from typing import Protocol

log = logging.getLogger("linechat.transport")


class LineTransport(Protocol):
    peer: str

    def read_line(self) -> str | None:
        """Return the next line without its terminator, or None at end of stream."""
        ...

    def write_line(self, text: str) -> None: ...

    def close(self) -> None: ...


def _fmt_peer(sock: socket.socket) -> str:
    try:
        addr = sock.getpeername()
    except OSError:
        return "-"
    if isinstance(addr, tuple) and len(addr) >= 2:
        return f"{addr[0]}:{addr[1]}"
    return str(addr) or "-"


class SocketLineTransport:
    """
    Newline-framed text over a connected TCP socket.

    Reads block until a full line (or end of stream) arrives. Writes are
    bounded by ``send_timeout_s`` so that a client which stops reading
    cannot pin its writer thread forever.
    """

    def __init__(
        self,
        sock: socket.socket,
        *,
        encoding: str = "utf-8",
        send_timeout_s: float = 5.0,
        max_line_bytes: int = 64 * 1024,
    ) -> None:
        self.sock = sock
        self.peer = _fmt_peer(sock)
        self.encoding = encoding
        self.send_timeout_s = float(send_timeout_s)
        self.max_line_bytes = int(max_line_bytes)
        self._reader = sock.makefile("rb")
        self._write_lock = threading.Lock()
        self._closed = False

    def read_line(self) -> str | None:
        """Return the next line, or None at end of stream.

        A line longer than ``max_line_bytes`` is truncated to that many bytes
        (never splitting a character) and the rest of it is discarded, so the
        overflow is never seen as a line of its own.
        """
        raw = self._reader.readline(self.max_line_bytes)
        if not raw:
            return None
        if raw.endswith(b"\n"):
            return raw.decode(self.encoding, errors="replace").rstrip("\r\n")

        if len(raw) < self.max_line_bytes:
            # Final line without a terminator.
            return raw.decode(self.encoding, errors="replace").rstrip("\r")

        discarded = self._discard_rest_of_line()
        if discarded:
            log.warning(
                "Truncated long line peer=%s limit=%s discarded=%s",
                self.peer,
                self.max_line_bytes,
                discarded,
            )
        decoder = codecs.getincrementaldecoder(self.encoding)(errors="replace")
        # final=False drops a multibyte sequence cut at the limit.
        return decoder.decode(raw, final=False).rstrip("\r")

    def _discard_rest_of_line(self) -> int:
        discarded = 0
        while True:
            chunk = self._reader.readline(self.max_line_bytes)
            if not chunk:
                return discarded
            if chunk.endswith(b"\n"):
                return discarded + len(chunk) - 1
            discarded += len(chunk)

    def write_line(self, text: str) -> None:
        data = memoryview((text + "\n").encode(self.encoding, errors="replace"))
        flags = getattr(socket, "MSG_DONTWAIT", 0)
        deadline = time.monotonic() + self.send_timeout_s

        with self._write_lock:
            while data:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(f"send to {self.peer} timed out")
                _, writable, _ = select.select([], [self.sock], [], remaining)
                if not writable:
                    continue
                try:
                    sent = self.sock.send(data, flags)
                except BlockingIOError:
                    continue
                data = data[sent:]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            # Wakes up a reader blocked in recv on another thread.
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self._reader.close()
        except OSError:
            pass
        self.sock.close()
