from __future__ import annotations

from datetime import datetime

import pytest

from linechat.registry import SessionRegistry
from linechat.router import MessageRouter
from linechat.session import Session
from linechat.stats import StatsManager

FIXED_NOW = datetime(2024, 3, 9, 13, 5, 9)


class RecordingOutbound:
    """Outbound sink that records lines synchronously."""

    def __init__(self, *, fail: bool = False) -> None:
        self.lines: list[str] = []
        self.fail = fail
        self.closed = False

    def deliver(self, line: str) -> bool:
        if self.fail or self.closed:
            return False
        self.lines.append(line)
        return True

    def close(self, timeout: float | None = None) -> None:
        self.closed = True


class ScriptedTransport:
    """Transport fed from a list; Exception items are raised from read_line."""

    def __init__(
        self,
        lines,
        *,
        peer: str = "127.0.0.1:40000",
        fail_writes: bool = False,
        close_error: Exception | None = None,
    ) -> None:
        self.peer = peer
        self._lines = list(lines)
        self.written: list[str] = []
        self.fail_writes = fail_writes
        self.close_error = close_error
        self.close_calls = 0

    def read_line(self) -> str | None:
        if self.close_calls or not self._lines:
            return None
        item = self._lines.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def write_line(self, text: str) -> None:
        if self.fail_writes:
            raise BrokenPipeError("peer went away")
        self.written.append(text)

    def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


class DirectOutbound:
    """Writes straight through to the transport, reporting failures."""

    def __init__(self, transport: ScriptedTransport) -> None:
        self.transport = transport

    def deliver(self, line: str) -> bool:
        try:
            self.transport.write_line(line)
        except OSError:
            return False
        return True

    def close(self, timeout: float | None = None) -> None:
        self.transport.close()


@pytest.fixture
def stats() -> StatsManager:
    return StatsManager()


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def router(registry: SessionRegistry, stats: StatsManager) -> MessageRouter:
    return MessageRouter(registry, stats=stats, clock=lambda: FIXED_NOW)


@pytest.fixture
def make_session():
    def _make(name: str, *, fail: bool = False) -> Session:
        return Session(name, RecordingOutbound(fail=fail))

    return _make


@pytest.fixture
def join(registry: SessionRegistry, make_session):
    """Create a session with a recording outbound and register it."""

    def _join(name: str, *, fail: bool = False) -> Session:
        session = make_session(name, fail=fail)
        registry.add(session)
        return session

    return _join


@pytest.fixture
def scripted_transport():
    return ScriptedTransport


@pytest.fixture
def direct_outbound():
    return DirectOutbound
