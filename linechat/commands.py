"""Handling for the client slash commands that produce deliveries."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .constants import (
    DM_FROM_TEMPLATE,
    DM_NOT_FOUND_TEMPLATE,
    DM_SELF,
    DM_TO_TEMPLATE,
    DM_USAGE,
    NO_USERS,
    UNKNOWN_COMMAND,
    USERS_ENTRY_TEMPLATE,
    USERS_HEADER_TEMPLATE,
)
from .util import name_key

if TYPE_CHECKING:
    from .router import MessageRouter, Outgoing
    from .session import Session


class CommandHandler:
    """Handles /users, /dm and unrecognized commands for the router."""

    def __init__(self, router: MessageRouter) -> None:
        self.router = router

    def _notice(self, outgoing: Outgoing, session: Session, text: str) -> None:
        self.router._inc("notices")
        outgoing.append((session, text))

    def users_listing(self) -> list[str]:
        sessions = self.router.registry.snapshot()
        if not sessions:
            return [NO_USERS]

        lines = [USERS_HEADER_TEMPLATE.format(count=len(sessions))]
        for s in sessions:
            lines.append(USERS_ENTRY_TEMPLATE.format(name=s.display_name))
        return lines

    def handle_users(self, session: Session, outgoing: Outgoing) -> None:
        self.router._inc("notices")
        for line in self.users_listing():
            outgoing.append((session, line))

    def handle_dm(self, session: Session, text: str, outgoing: Outgoing) -> None:
        # "/dm <name> <body>": the body keeps its inner whitespace.
        parts = text.split(None, 2)
        if len(parts) < 3:
            self._notice(outgoing, session, DM_USAGE)
            return

        target_name, body = parts[1], parts[2]

        if name_key(target_name) == name_key(session.display_name):
            self._notice(outgoing, session, DM_SELF)
            return

        target = self.router.registry.find_by_name(target_name)
        if target is None:
            self._notice(outgoing, session, DM_NOT_FOUND_TEMPLATE.format(name=target_name))
            return

        outgoing.append(
            (
                target,
                self.router.stamp(DM_FROM_TEMPLATE.format(name=session.display_name, text=body)),
            )
        )
        outgoing.append(
            (
                session,
                self.router.stamp(DM_TO_TEMPLATE.format(name=target.display_name, text=body)),
            )
        )
        self.router._inc("dms")
        self.router.log.info(
            "DM from=%r to=%r session_id=%s target_id=%s",
            session.display_name,
            target.display_name,
            session.id,
            target.id,
        )

    def handle_unknown(self, session: Session, text: str, outgoing: Outgoing) -> None:
        self.router.log.debug("Unknown command session_id=%s cmd=%r", session.id, text)
        self._notice(outgoing, session, UNKNOWN_COMMAND)
