from __future__ import annotations

from .util import fmt_short


class Directory:
    """Peer identity -> last announced nickname.

    Owned by the receive loop; other components must not touch it directly.
    Last write wins, entries never expire.
    """

    def __init__(self) -> None:
        self._names: dict[bytes, str] = {}

    def record(self, peer: bytes, name: str) -> None:
        self._names[bytes(peer)] = name

    def resolve(self, peer: bytes) -> str:
        name = self._names.get(bytes(peer)) if isinstance(peer, (bytes, bytearray)) else None
        if name:
            return name
        return fmt_short(peer)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, peer: object) -> bool:
        if not isinstance(peer, (bytes, bytearray)):
            return False
        return bytes(peer) in self._names
