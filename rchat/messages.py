"""Chat wire messages.

Two message kinds travel over a room: a nickname announcement and a chat
line. Both are CBOR maps keyed by small integers; see ``constants.py``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .codec import decode, encode
from .constants import K_BODY, K_SRC, K_T, K_V, RCHAT_VERSION, T_ABOUT_ME, T_CHAT
from .errors import MalformedMessage


@dataclass(frozen=True)
class AboutMe:
    sender: bytes
    name: str


@dataclass(frozen=True)
class Chat:
    sender: bytes
    text: str


Message = Union[AboutMe, Chat]


def serialize(message: Message) -> bytes:
    if isinstance(message, AboutMe):
        t, body = T_ABOUT_ME, message.name
    elif isinstance(message, Chat):
        t, body = T_CHAT, message.text
    else:
        raise TypeError(f"not a chat message: {type(message).__name__}")

    return encode(
        {
            K_V: RCHAT_VERSION,
            K_T: t,
            K_SRC: bytes(message.sender),
            K_BODY: body,
        }
    )


def deserialize(data: bytes) -> Message:
    try:
        env = decode(data)
    except Exception as e:
        raise MalformedMessage(f"undecodable payload: {e}") from e

    if not isinstance(env, dict):
        raise MalformedMessage("message must be a CBOR map")

    for k in env.keys():
        if not isinstance(k, int) or isinstance(k, bool):
            raise MalformedMessage("message keys must be integers")

    for k in (K_V, K_T, K_SRC, K_BODY):
        if k not in env:
            raise MalformedMessage(f"missing message key {k}")

    v = env[K_V]
    if not isinstance(v, int) or isinstance(v, bool):
        raise MalformedMessage("protocol version must be an integer")
    if v != RCHAT_VERSION:
        raise MalformedMessage(f"unsupported version {v}")

    src = env[K_SRC]
    if not isinstance(src, bytes) or not src:
        raise MalformedMessage("sender identity must be non-empty bytes")

    body = env[K_BODY]
    if not isinstance(body, str):
        raise MalformedMessage("message body must be a string")

    t = env[K_T]
    if not isinstance(t, int) or isinstance(t, bool):
        raise MalformedMessage("message type must be an integer")
    if t == T_ABOUT_ME:
        return AboutMe(sender=src, name=body)
    if t == T_CHAT:
        return Chat(sender=src, text=body)
    raise MalformedMessage(f"unsupported message type {t!r}")
