import os

import pytest

from rchat.errors import TransportError
from rchat.ticket import NodeAddress
from rchat.transport import EventStream, NeighborUp, Received, Subscription


class MemoryNetwork:
    """All subscribers of a topic see each other's broadcasts, never their own."""

    def __init__(self) -> None:
        self.rooms: dict[bytes, dict[bytes, EventStream]] = {}

    def deliver(self, topic: bytes, sender_id: bytes, payload: bytes) -> None:
        for node_id, stream in list(self.rooms.get(topic, {}).items()):
            if node_id != sender_id:
                stream.push(Received(content=payload, delivered_from=sender_id))


class MemorySender:
    def __init__(self, transport, topic: bytes) -> None:
        self.transport = transport
        self.topic = topic

    def broadcast(self, payload: bytes) -> None:
        if self.transport.closed:
            raise TransportError("room is closed")
        self.transport.calls.append("broadcast")
        self.transport.network.deliver(self.topic, self.transport.node_id, payload)


class MemoryTransport:
    def __init__(self, network: MemoryNetwork) -> None:
        self.network = network
        self.node_id = os.urandom(16)
        self.calls: list[str] = []
        self.peers: list[NodeAddress] = []
        self.stream: EventStream | None = None
        self.closed = False

    def start(self) -> None:
        self.calls.append("start")

    def local_address(self) -> NodeAddress:
        return NodeAddress(node_id=self.node_id)

    def add_peer_address(self, address: NodeAddress) -> None:
        self.calls.append("add_peer_address")
        self.peers.append(address)

    def subscribe(self, topic: bytes, bootstrap: list[bytes]) -> Subscription:
        self.calls.append("subscribe")
        self.stream = EventStream()
        members = self.network.rooms.setdefault(topic, {})
        for node_id, stream in members.items():
            stream.push(NeighborUp(self.node_id))
        members[self.node_id] = self.stream
        return Subscription(sender=MemorySender(self, topic), receiver=self.stream)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.calls.append("close")
        if self.stream is not None:
            self.stream.end()


@pytest.fixture
def network() -> MemoryNetwork:
    return MemoryNetwork()


@pytest.fixture
def make_transport(network):
    def _make() -> MemoryTransport:
        return MemoryTransport(network)

    return _make
