"""Error taxonomy for rchat.

Decode failures subclass ``ValueError`` so callers that only care about bad
input can catch them the usual way.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for all rchat errors."""


class DecodeError(ChatError, ValueError):
    """A ticket or wire message could not be decoded."""


class MalformedTicket(DecodeError):
    pass


class MalformedMessage(DecodeError):
    pass


class TransportError(ChatError):
    """Join, broadcast or address registration failed in the transport."""


class InputError(ChatError):
    """The line input source failed."""
