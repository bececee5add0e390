"""Capabilities rchat needs from a pub/sub transport.

The chat core only sees these types. ``rchat.reticulum`` provides the
Reticulum-backed implementation; tests use an in-memory one.
"""

from __future__ import annotations

import queue
from dataclasses import dataclass
from typing import Iterator, Protocol, Union

from .ticket import NodeAddress


@dataclass(frozen=True)
class Received:
    content: bytes
    delivered_from: bytes


@dataclass(frozen=True)
class NeighborUp:
    node_id: bytes


@dataclass(frozen=True)
class NeighborDown:
    node_id: bytes


Event = Union[Received, NeighborUp, NeighborDown]


class RoomSender(Protocol):
    def broadcast(self, payload: bytes) -> None: ...


class RoomReceiver(Protocol):
    def __iter__(self) -> Iterator[Event]: ...


class Transport(Protocol):
    def start(self) -> None: ...

    def local_address(self) -> NodeAddress: ...

    def add_peer_address(self, address: NodeAddress) -> None: ...

    def subscribe(self, topic: bytes, bootstrap: list[bytes]) -> Subscription: ...

    def close(self) -> None: ...


class EventStream:
    """Unbounded event queue fed by transport callbacks, drained by one reader.

    Transport threads call ``push``; iteration ends after ``end``.
    """

    _END = object()

    def __init__(self) -> None:
        self._q: queue.Queue = queue.Queue()

    def push(self, event: Event) -> None:
        self._q.put(event)

    def end(self) -> None:
        self._q.put(self._END)

    def __iter__(self) -> Iterator[Event]:
        while True:
            item = self._q.get()
            if item is self._END:
                return
            yield item


@dataclass
class Subscription:
    sender: RoomSender
    receiver: RoomReceiver

    def split(self) -> tuple[RoomSender, RoomReceiver]:
        return self.sender, self.receiver
