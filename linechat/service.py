from __future__ import annotations

import errno
import logging
import signal
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor

from . import __version__
from .config import ChatServerConfig, validate_config
from .constants import CAPACITY_REJECT, SERVER_FULL
from .lifecycle import SessionController
from .registry import SessionRegistry
from .router import MessageRouter
from .stats import StatsManager
from .transport import LineTransport, SocketLineTransport

# accept() failures that say nothing about the listener itself: a peer that
# reset before we got to it, or momentary descriptor/memory exhaustion.
_TRANSIENT_ACCEPT_ERRNOS = frozenset(
    {
        errno.ECONNABORTED,
        errno.EMFILE,
        errno.ENFILE,
        errno.ENOBUFS,
        errno.ENOMEM,
        errno.EINTR,
    }
)


class ChatService:
    """
    Accepts TCP connections and serves each on a bounded worker pool.

    One worker thread per connection, at most ``max_clients`` at a time.
    Connections beyond that are handled by ``capacity_policy``: "queue" lets
    up to ``max_queued_connections`` wait for a free worker, "reject" turns
    them away at once. Anything past the queue bound is rejected as well.
    """

    def __init__(self, config: ChatServerConfig) -> None:
        self.config = validate_config(config)
        self.log = logging.getLogger("linechat.hub")

        self.stats = StatsManager()
        self.registry = SessionRegistry()
        self.router = MessageRouter(self.registry, stats=self.stats)

        self._shutdown = threading.Event()
        self._stopped = threading.Event()

        # Guards admission counters and the controller set.
        self._capacity_lock = threading.Lock()
        self._in_flight = 0
        self._controllers: set[SessionController] = set()

        self._listener: socket.socket | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._accept_thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int] | None:
        if self._listener is None:
            return None
        host, port = self._listener.getsockname()[:2]
        return host, port

    @property
    def in_flight(self) -> int:
        with self._capacity_lock:
            return self._in_flight

    def admit(self) -> bool:
        """Reserve a slot for a new connection, or refuse it.

        Running plus waiting connections never exceed ``max_clients`` (reject)
        or ``max_clients + max_queued_connections`` (queue).
        """
        limit = int(self.config.max_clients)
        if self.config.capacity_policy != CAPACITY_REJECT:
            limit += int(self.config.max_queued_connections)

        with self._capacity_lock:
            if self._in_flight >= limit:
                return False
            self._in_flight += 1
            queued = self._in_flight > int(self.config.max_clients)

        if queued:
            self.log.info("All workers busy; connection queued in_flight=%s", self.in_flight)
        return True

    def release(self) -> None:
        with self._capacity_lock:
            self._in_flight = max(0, self._in_flight - 1)

    def start(self) -> None:
        self.stats.set_start_time()

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind((self.config.host, int(self.config.port)))
        listener.listen()
        listener.settimeout(float(self.config.accept_poll_s))
        self._listener = listener

        self._executor = ThreadPoolExecutor(
            max_workers=int(self.config.max_clients),
            thread_name_prefix="linechat-session",
        )

        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="linechat-accept", daemon=True
        )
        self._accept_thread.start()

        host, port = self.address or (self.config.host, self.config.port)
        self.log.info("linechat %s listening host=%s port=%s", __version__, host, port)
        self.log.info(
            "Policy max_clients=%s capacity_policy=%s max_queued_connections=%s",
            self.config.max_clients,
            self.config.capacity_policy,
            self.config.max_queued_connections,
        )

    def _accept_loop(self) -> None:
        listener = self._listener
        if listener is None:
            return

        while not self._shutdown.is_set():
            try:
                sock, addr = listener.accept()
            except TimeoutError:
                continue
            except OSError as e:
                if self._shutdown.is_set():
                    break
                if isinstance(e, ConnectionAbortedError) or e.errno in _TRANSIENT_ACCEPT_ERRNOS:
                    self.log.warning("Accept failed, retrying: %s", e)
                    self._shutdown.wait(float(self.config.accept_backoff_s))
                    continue
                self.log.error("Accept failed, shutting down: %s", e)
                threading.Thread(target=self.stop, name="linechat-stop", daemon=True).start()
                break

            self._on_accept(sock, addr)

    def _on_accept(self, sock: socket.socket, addr) -> None:
        # Accepted sockets must block; the listener timeout is inherited on some platforms.
        sock.settimeout(None)
        transport = SocketLineTransport(sock, send_timeout_s=self.config.send_timeout_s)
        self.stats.inc("connections")

        if not self.admit():
            self.stats.inc("rejected")
            self.log.warning("Rejected connection peer=%s: server full", transport.peer)
            self._reject(transport)
            return

        self.log.info("Connection accepted peer=%s", transport.peer)
        self.submit(transport)

    def _reject(self, transport: LineTransport) -> None:
        try:
            transport.write_line(SERVER_FULL)
        except OSError:
            pass
        try:
            transport.close()
        except OSError:
            pass

    def submit(self, transport: LineTransport) -> SessionController:
        """Hand an admitted connection to the worker pool."""
        if self._executor is None:
            raise RuntimeError("service is not started")

        controller = SessionController(
            transport,
            self.registry,
            self.router,
            config=self.config,
            stats=self.stats,
        )
        with self._capacity_lock:
            self._controllers.add(controller)

        try:
            self._executor.submit(self._serve, controller)
        except RuntimeError:
            # Executor already shut down.
            self._finish(controller)
            controller.close()
        return controller

    def _serve(self, controller: SessionController) -> None:
        try:
            if self._shutdown.is_set():
                controller.close()
            controller.run()
        finally:
            self._finish(controller)

    def _finish(self, controller: SessionController) -> None:
        with self._capacity_lock:
            self._controllers.discard(controller)
        self.release()

    def run_forever(self) -> None:
        if self._listener is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._stopped.is_set():
            time.sleep(0.25)

    def stop(self, grace_s: float | None = None) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()

        grace = float(self.config.shutdown_grace_s if grace_s is None else grace_s)
        self.log.info("Shutting down sessions=%s", self.registry.count())

        if self._listener is not None:
            try:
                self._listener.close()
            except OSError:
                pass

        if self._accept_thread is not None and self._accept_thread is not threading.current_thread():
            self._accept_thread.join(max(1.0, float(self.config.accept_poll_s) * 2))

        with self._capacity_lock:
            controllers = list(self._controllers)
        for controller in controllers:
            controller.close()

        if self._executor is not None:
            deadline = time.monotonic() + grace
            while self.in_flight and time.monotonic() < deadline:
                time.sleep(0.05)
            self._executor.shutdown(wait=False, cancel_futures=True)

        leftover = self.registry.clear_all()
        if leftover:
            self.log.warning(
                "Dropping %s session(s) still live after grace period", len(leftover)
            )
        for session in leftover:
            session.outbound.close(0)

        self.log.info("Stopped\n%s", self.stats.format_stats(live_sessions=self.registry.count()))
        self._stopped.set()
