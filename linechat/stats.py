"""Statistics tracking and reporting for the chat server."""

from __future__ import annotations

import threading
import time


class StatsManager:
    """
    Lifetime counters for the chat server.

    Tracks:
    - Connections accepted and rejected
    - Joins and leaves
    - Lines received
    - Broadcasts, direct messages and private notices
    - Deliveries and delivery failures
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections": 0,
            "rejected": 0,
            "joins": 0,
            "leaves": 0,
            "lines_in": 0,
            "broadcasts": 0,
            "dms": 0,
            "notices": 0,
            "deliveries": 0,
            "delivery_failures": 0,
        }

    def set_start_time(self) -> None:
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self, *, live_sessions: int | None = None) -> str:
        from . import __version__

        started = self.started_monotonic
        uptime_s = (time.monotonic() - started) if started is not None else 0.0
        c = self.snapshot()

        lines: list[str] = []
        lines.append(f"linechat {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        if live_sessions is not None:
            lines.append(f"sessions_live={live_sessions}")
        lines.append(
            "connections: accepted={} rejected={}".format(
                c.get("connections", 0), c.get("rejected", 0)
            )
        )
        lines.append(
            "events: joins={} leaves={} lines_in={}".format(
                c.get("joins", 0), c.get("leaves", 0), c.get("lines_in", 0)
            )
        )
        lines.append(
            "routing: broadcasts={} dms={} notices={}".format(
                c.get("broadcasts", 0), c.get("dms", 0), c.get("notices", 0)
            )
        )
        lines.append(
            "delivery: ok={} failed={}".format(
                c.get("deliveries", 0), c.get("delivery_failures", 0)
            )
        )
        return "\n".join(lines)
