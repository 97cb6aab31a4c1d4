from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from .commands import CommandHandler
from .constants import CHAT_TEMPLATE, CMD_DM, CMD_QUIT, CMD_USERS, COMMAND_PREFIX
from .util import format_timestamp, local_now, sanitize_line

if TYPE_CHECKING:
    from .registry import SessionRegistry
    from .session import Session
    from .stats import StatsManager


Outgoing = list[tuple["Session", str]]


class RouteResult(enum.Enum):
    CONTINUE = "continue"
    QUIT = "quit"


class MessageRouter:
    """
    Turns one inbound line into zero, one or many deliveries.

    This class is responsible for:
    - Recognizing /quit, /users and /dm (keywords are case-insensitive)
    - Broadcasting ordinary lines to every live session, sender included
    - Fanning deliveries out so one failed recipient never stops the rest

    Membership is always read from the registry at the time a line is
    processed; the router keeps no session state of its own.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        *,
        stats: StatsManager | None = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.registry = registry
        self.stats = stats
        self.clock = clock
        self.log = logging.getLogger("linechat.router")
        self.command_handler = CommandHandler(self)

    def _inc(self, key: str, delta: int = 1) -> None:
        if self.stats is not None:
            self.stats.inc(key, delta)

    def stamp(self, text: str) -> str:
        return f"[{format_timestamp(self.clock())}] {text}"

    def route_line(self, session: Session, line: str) -> RouteResult:
        """Route one line from ``session``.

        Returns QUIT when the session asked to leave; the caller owns the
        teardown.
        """
        text = sanitize_line(line).strip()
        if not text:
            return RouteResult.CONTINUE

        outgoing: Outgoing = []

        if text.startswith(COMMAND_PREFIX):
            lowered = text.lower()
            keyword = lowered.split(None, 1)[0]

            if lowered == CMD_QUIT:
                self.log.debug("Quit requested session_id=%s", session.id)
                return RouteResult.QUIT

            if lowered == CMD_USERS:
                self.command_handler.handle_users(session, outgoing)
            elif keyword == CMD_DM:
                self.command_handler.handle_dm(session, text, outgoing)
            else:
                self.command_handler.handle_unknown(session, text, outgoing)
        else:
            self.queue_broadcast(
                outgoing, CHAT_TEMPLATE.format(name=session.display_name, text=text)
            )

        self.dispatch(outgoing)
        return RouteResult.CONTINUE

    def queue_broadcast(self, outgoing: Outgoing, text: str) -> int:
        """Queue ``text`` for every session currently in the registry."""
        stamped = self.stamp(text)
        recipients = self.registry.snapshot()
        for recipient in recipients:
            outgoing.append((recipient, stamped))

        self._inc("broadcasts")
        self.log.info("BROADCAST recipients=%s %s", len(recipients), stamped)
        return len(recipients)

    def broadcast(self, text: str) -> int:
        """Stamp and deliver ``text`` to every live session.

        Returns the number of recipients that could not be reached.
        """
        outgoing: Outgoing = []
        self.queue_broadcast(outgoing, text)
        return self.dispatch(outgoing)

    def dispatch(self, outgoing: Outgoing) -> int:
        failures = 0
        for recipient, text in outgoing:
            if recipient.send(text):
                self._inc("deliveries")
                continue

            failures += 1
            self._inc("delivery_failures")
            self.log.warning(
                "Delivery failed session_id=%s name=%r peer=%s",
                recipient.id,
                recipient.display_name,
                recipient.peer,
            )
        return failures
