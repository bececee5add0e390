from __future__ import annotations

import logging
from typing import Callable

from .directory import Directory
from .errors import MalformedMessage
from .messages import AboutMe, Chat, deserialize
from .transport import NeighborDown, NeighborUp, Received, RoomReceiver
from .util import fmt_short

IDLE = "idle"
LISTENING = "listening"
DISPATCH = "dispatch"
DONE = "done"


class RoomListener:
    """
    Receive loop for a joined room.

    Consumes transport events, keeps the nickname directory, and writes one
    line per chat event to the output sink. The directory is private to this
    loop.

    Malformed payloads are skipped and reported unless ``strict`` is set, in
    which case the first one ends the loop with ``MalformedMessage``.
    """

    def __init__(
        self,
        receiver: RoomReceiver,
        emit: Callable[[str], None],
        *,
        strict: bool = False,
    ) -> None:
        self.receiver = receiver
        self.emit = emit
        self.strict = strict
        self.log = logging.getLogger("rchat.listener")
        self.state = IDLE
        self._directory = Directory()
        self.counters: dict[str, int] = {
            "received": 0,
            "malformed": 0,
            "renames": 0,
            "chats": 0,
        }

    def run(self) -> None:
        self.state = LISTENING
        try:
            for event in self.receiver:
                self.state = DISPATCH
                self.dispatch(event)
                self.state = LISTENING
        finally:
            self.state = DONE
        self.log.debug("Receive loop ended counters=%s", self.counters)

    def dispatch(self, event) -> None:
        if isinstance(event, Received):
            self._on_received(event)
        elif isinstance(event, (NeighborUp, NeighborDown)):
            self.log.debug(
                "%s peer=%s", type(event).__name__, fmt_short(event.node_id)
            )
        else:
            self.log.debug("Ignoring transport event %r", event)

    def _on_received(self, event: Received) -> None:
        self.counters["received"] += 1
        try:
            message = deserialize(event.content)
        except MalformedMessage as e:
            self.counters["malformed"] += 1
            if self.strict:
                raise
            self.log.warning(
                "Dropped malformed message peer=%s bytes=%s err=%s",
                fmt_short(event.delivered_from),
                len(event.content),
                e,
            )
            self.emit(f"> dropped malformed message from {fmt_short(event.delivered_from)}")
            return

        if isinstance(message, AboutMe):
            self.counters["renames"] += 1
            self._directory.record(message.sender, message.name)
            self.emit(f"> {fmt_short(message.sender)} is now known as {message.name}")
        elif isinstance(message, Chat):
            self.counters["chats"] += 1
            name = self._directory.resolve(message.sender)
            self.emit(f"{name}: {message.text}")
