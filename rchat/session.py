from __future__ import annotations

import logging
import sys
import threading
from typing import Callable, TextIO

from .broadcast import Broadcaster
from .listener import RoomListener
from .pump import InputPump, LineHandoff
from .ticket import NodeAddress, Ticket, decode_ticket, fmt_topic, new_topic_id
from .transport import Transport


def _print_line(text: str) -> None:
    print(text, flush=True)


def open_room() -> tuple[bytes, list[NodeAddress]]:
    return new_topic_id(), []


def join_room(ticket_text: str) -> tuple[bytes, list[NodeAddress]]:
    """Decode an invitation; raises MalformedTicket before any network work."""
    ticket = decode_ticket(ticket_text)
    return ticket.topic, list(ticket.nodes)


class ChatSession:
    """
    One joined room, from subscription to shutdown.

    Runs three activities:
    - the receive loop on its own thread
    - the input pump on its own (daemon) thread
    - the broadcast loop on the calling thread
    """

    def __init__(
        self,
        transport: Transport,
        topic: bytes,
        nodes: list[NodeAddress],
        *,
        name: str | None = None,
        joining: bool = False,
        strict: bool = False,
        source: TextIO | None = None,
        emit: Callable[[str], None] = _print_line,
    ) -> None:
        self.transport = transport
        self.topic = topic
        self.nodes = list(nodes)
        self.name = name
        self.joining = joining
        self.strict = strict
        self.source = source if source is not None else sys.stdin
        self.emit = emit
        self.log = logging.getLogger("rchat.session")

        self.handoff = LineHandoff()
        self.ticket: Ticket | None = None
        self.listener: RoomListener | None = None
        self._listener_thread: threading.Thread | None = None
        self._listener_error: Exception | None = None

    def _run_listener(self) -> None:
        try:
            self.listener.run()
        except Exception as e:
            self._listener_error = e
            self.log.error("Receive loop failed: %s", e)
            # Ends the broadcast loop; the error is re-raised from run().
            self.handoff.close()

    def run(self) -> None:
        verb = "joining" if self.joining else "opening"
        self.emit(f"> {verb} chat room for topic {fmt_topic(self.topic)}")

        self.transport.start()
        me = self.transport.local_address()
        self.emit(f"> our node id: {me.node_id.hex()}")

        self.ticket = Ticket(topic=self.topic, nodes=(me,))
        self.emit(f"> ticket to join us: {self.ticket}")

        if not self.nodes:
            self.emit("> waiting for nodes to join us...")
        else:
            self.emit(f"> trying to connect to {len(self.nodes)} nodes...")
            for node in self.nodes:
                self.transport.add_peer_address(node)

        try:
            subscription = self.transport.subscribe(
                self.topic, [n.node_id for n in self.nodes]
            )
            self.emit("> connected!")
            self.log.info(
                "Joined room %s with %d bootstrap nodes", self.ticket.short(), len(self.nodes)
            )
            sender, receiver = subscription.split()

            self.listener = RoomListener(receiver, self.emit, strict=self.strict)
            self._listener_thread = threading.Thread(
                target=self._run_listener, name="rchat-receive", daemon=True
            )
            self._listener_thread.start()

            broadcaster = Broadcaster(sender, me.node_id, self.emit, name=self.name)
            InputPump(self.source, self.handoff).start()

            self.emit("> type a message and hit enter to broadcast...")
            broadcaster.run(self.handoff)
        finally:
            self.transport.close()
            if self._listener_thread is not None:
                self._listener_thread.join(timeout=5.0)

        if self._listener_error is not None:
            raise self._listener_error
