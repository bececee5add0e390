import base64
import hashlib
import os

import pytest

from rchat.codec import encode
from rchat.constants import N_ID, N_KEY, TK_NODES, TK_TOPIC, TK_V
from rchat.errors import DecodeError, MalformedTicket
from rchat.ticket import (
    NodeAddress,
    Ticket,
    decode_ticket,
    encode_ticket,
    fmt_topic,
    new_topic_id,
    node_id_for_key,
)


def _addr(with_key: bool = True) -> NodeAddress:
    key = os.urandom(64)
    if with_key:
        return NodeAddress(node_id=hashlib.sha256(key).digest()[:16], public_key=key)
    return NodeAddress(node_id=os.urandom(16))


def _raw_ticket(obj) -> str:
    return base64.b32encode(encode(obj)).decode("ascii").rstrip("=").lower()


def test_ticket_round_trip() -> None:
    t = Ticket(topic=new_topic_id(), nodes=(_addr(), _addr(with_key=False)))
    assert decode_ticket(encode_ticket(t)) == t


def test_ticket_round_trip_without_nodes() -> None:
    t = Ticket(topic=new_topic_id())
    assert decode_ticket(str(t)) == t


def test_ticket_text_is_single_printable_line() -> None:
    text = encode_ticket(Ticket(topic=new_topic_id(), nodes=(_addr(),)))
    assert text.isprintable()
    assert "\n" not in text and " " not in text and "=" not in text
    assert text == text.lower()


def test_ticket_encoding_is_deterministic() -> None:
    t = Ticket(topic=new_topic_id(), nodes=(_addr(),))
    assert encode_ticket(t) == encode_ticket(t)


def test_decode_tolerates_whitespace_and_case() -> None:
    t = Ticket(topic=new_topic_id(), nodes=(_addr(),))
    assert decode_ticket(f"  {str(t).upper()}\n") == t


def test_decode_rejects_plain_text() -> None:
    with pytest.raises(MalformedTicket):
        decode_ticket("not a valid ticket")


def test_decode_errors_are_decode_errors() -> None:
    with pytest.raises(DecodeError):
        decode_ticket("")
    with pytest.raises(ValueError):
        decode_ticket("!!!!")


def test_decode_rejects_non_text() -> None:
    with pytest.raises(MalformedTicket):
        decode_ticket(b"abc")  # type: ignore[arg-type]


def test_decode_rejects_garbage_bytes() -> None:
    for _ in range(50):
        text = base64.b32encode(os.urandom(40)).decode("ascii").rstrip("=").lower()
        with pytest.raises(MalformedTicket):
            decode_ticket(text)


def test_decode_rejects_truncated_ticket() -> None:
    text = encode_ticket(Ticket(topic=new_topic_id(), nodes=(_addr(),)))
    with pytest.raises(MalformedTicket):
        decode_ticket(text[:-16])


def test_short_rendering_is_not_decodable() -> None:
    t = Ticket(topic=new_topic_id(), nodes=(_addr(),))
    short = t.short()
    assert short.endswith("@" + t.nodes[0].node_id.hex()[:10])
    with pytest.raises(MalformedTicket):
        decode_ticket(short)


def test_decode_rejects_wrong_topic_size() -> None:
    with pytest.raises(MalformedTicket):
        decode_ticket(_raw_ticket({TK_V: 1, TK_TOPIC: os.urandom(16), TK_NODES: []}))


def test_decode_rejects_unknown_version() -> None:
    with pytest.raises(MalformedTicket):
        decode_ticket(_raw_ticket({TK_V: 2, TK_TOPIC: os.urandom(32), TK_NODES: []}))


def test_decode_rejects_missing_nodes() -> None:
    with pytest.raises(MalformedTicket):
        decode_ticket(_raw_ticket({TK_V: 1, TK_TOPIC: os.urandom(32)}))


def test_decode_rejects_bad_node_entries() -> None:
    topic = os.urandom(32)
    bad_nodes = [
        ["not a map"],
        [{N_ID: os.urandom(8)}],
        [{N_ID: os.urandom(16), N_KEY: os.urandom(10)}],
        # Key that does not hash to the node id.
        [{N_ID: os.urandom(16), N_KEY: os.urandom(64)}],
    ]
    for nodes in bad_nodes:
        with pytest.raises(MalformedTicket):
            decode_ticket(_raw_ticket({TK_V: 1, TK_TOPIC: topic, TK_NODES: nodes}))


def test_node_id_derivation_matches_sha256_prefix() -> None:
    key = os.urandom(64)
    assert node_id_for_key(key) == hashlib.sha256(key).digest()[:16]


def test_fmt_topic_is_hex() -> None:
    topic = new_topic_id()
    assert len(topic) == 32
    assert fmt_topic(topic) == topic.hex()
