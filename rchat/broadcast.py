from __future__ import annotations

import logging
from typing import Callable, Iterable

from .messages import AboutMe, Chat, serialize
from .transport import RoomSender
from .util import fmt_short


class Broadcaster:
    """
    Send side of a joined room.

    Announces the configured nickname once, then turns every input line into
    a chat message. Transport errors propagate to the caller; nothing is
    retried.
    """

    def __init__(
        self,
        sender: RoomSender,
        self_id: bytes,
        emit: Callable[[str], None],
        *,
        name: str | None = None,
    ) -> None:
        self.sender = sender
        self.self_id = self_id
        self.emit = emit
        self.name = name
        self.log = logging.getLogger("rchat.broadcast")
        self.sent = 0

    def announce(self) -> None:
        if not self.name:
            return
        payload = serialize(AboutMe(sender=self.self_id, name=self.name))
        self.sender.broadcast(payload)
        self.log.info("Announced name=%r as %s", self.name, fmt_short(self.self_id))

    def send_line(self, text: str) -> None:
        payload = serialize(Chat(sender=self.self_id, text=text))
        self.sender.broadcast(payload)
        self.sent += 1
        self.emit(f"> sent: {text}")

    def run(self, lines: Iterable[str]) -> None:
        self.announce()
        for text in lines:
            self.send_line(text)
        self.log.debug("Input closed after %d message(s)", self.sent)
