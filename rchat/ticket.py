"""Room invitation tickets.

A ticket combines the room topic with the addresses of peers that can be used
to bootstrap into the room. The canonical text form is lowercase, unpadded
base32 of a canonical CBOR map, so it survives copy/paste between terminals.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
from dataclasses import dataclass

from .codec import decode, encode
from .constants import (
    N_ID,
    N_KEY,
    NODE_ID_LEN,
    PUBLIC_KEY_LEN,
    TICKET_VERSION,
    TK_NODES,
    TK_TOPIC,
    TK_V,
    TOPIC_ID_LEN,
)
from .errors import MalformedTicket
from .util import fmt_short


def new_topic_id() -> bytes:
    return os.urandom(TOPIC_ID_LEN)


def fmt_topic(topic: bytes) -> str:
    return bytes(topic).hex()


def node_id_for_key(public_key: bytes) -> bytes:
    # Same derivation as RNS.Identity.truncated_hash.
    return hashlib.sha256(public_key).digest()[:NODE_ID_LEN]


@dataclass(frozen=True)
class NodeAddress:
    node_id: bytes
    public_key: bytes | None = None

    def short(self) -> str:
        return fmt_short(self.node_id)


@dataclass(frozen=True)
class Ticket:
    topic: bytes
    nodes: tuple[NodeAddress, ...] = ()

    def __str__(self) -> str:
        return encode_ticket(self)

    def short(self) -> str:
        """Display-only rendering. Not accepted by decode_ticket."""
        first = self.nodes[0].short() if self.nodes else "-"
        return f"{fmt_short(self.topic)}@{first}"


def encode_ticket(ticket: Ticket) -> str:
    nodes = []
    for n in ticket.nodes:
        entry: dict[int, bytes] = {N_ID: bytes(n.node_id)}
        if n.public_key is not None:
            entry[N_KEY] = bytes(n.public_key)
        nodes.append(entry)

    raw = encode({TK_V: TICKET_VERSION, TK_TOPIC: bytes(ticket.topic), TK_NODES: nodes})
    return base64.b32encode(raw).decode("ascii").rstrip("=").lower()


def _b32decode(text: str) -> bytes:
    s = text.strip().upper()
    if not s:
        raise MalformedTicket("ticket is empty")
    s += "=" * (-len(s) % 8)
    try:
        return base64.b32decode(s)
    except (binascii.Error, ValueError) as e:
        raise MalformedTicket(f"ticket is not valid base32: {e}") from e


def _decode_node(obj) -> NodeAddress:
    if not isinstance(obj, dict):
        raise MalformedTicket("node address must be a map")

    node_id = obj.get(N_ID)
    if not isinstance(node_id, bytes) or len(node_id) != NODE_ID_LEN:
        raise MalformedTicket(f"node id must be {NODE_ID_LEN} bytes")

    key = obj.get(N_KEY)
    if key is not None:
        if not isinstance(key, bytes) or len(key) != PUBLIC_KEY_LEN:
            raise MalformedTicket(f"public key must be {PUBLIC_KEY_LEN} bytes")
        if node_id_for_key(key) != node_id:
            raise MalformedTicket("public key does not match node id")

    return NodeAddress(node_id=node_id, public_key=key)


def decode_ticket(text: str) -> Ticket:
    if not isinstance(text, str):
        raise MalformedTicket("ticket must be text")

    raw = _b32decode(text)
    try:
        obj = decode(raw)
    except Exception as e:
        raise MalformedTicket(f"ticket is not valid CBOR: {e}") from e

    if not isinstance(obj, dict):
        raise MalformedTicket("ticket must be a CBOR map")
    for k in obj.keys():
        if not isinstance(k, int) or isinstance(k, bool):
            raise MalformedTicket("ticket keys must be integers")

    v = obj.get(TK_V)
    if v != TICKET_VERSION or isinstance(v, bool):
        raise MalformedTicket(f"unsupported ticket version {v!r}")

    topic = obj.get(TK_TOPIC)
    if not isinstance(topic, bytes) or len(topic) != TOPIC_ID_LEN:
        raise MalformedTicket(f"topic must be {TOPIC_ID_LEN} bytes")

    nodes = obj.get(TK_NODES)
    if not isinstance(nodes, list):
        raise MalformedTicket("node list missing")

    return Ticket(topic=topic, nodes=tuple(_decode_node(n) for n in nodes))
