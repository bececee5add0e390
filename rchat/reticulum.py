"""Reticulum-backed room transport.

Every member of a room hosts an inbound destination named
``<app>.room.<topic-hex>`` and keeps links to the members it knows about.
Link payloads are small CBOR frames carrying a random frame id; each frame is
delivered locally once and flooded to every other neighbor.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import OrderedDict
from typing import TYPE_CHECKING

import RNS

from .codec import decode, encode
from .constants import F_ID, F_PAYLOAD, FRAME_ID_LEN, ROOM_ASPECT
from .errors import TransportError
from .ticket import NodeAddress, fmt_topic
from .transport import EventStream, NeighborDown, NeighborUp, Received, Subscription
from .util import expand_path, fmt_short

if TYPE_CHECKING:
    from .config import ChatRuntimeConfig

SEEN_FRAMES_MAX = 4096


class _AnnounceHandler:
    def __init__(self, room: _Room) -> None:
        self.room = room
        self.aspect_filter = room.dest_name
        self.receive_path_responses = True

    def received_announce(self, destination_hash, announced_identity, app_data):
        if announced_identity is None:
            return
        self.room.transport.log.debug(
            "Announce for room from peer=%s dest=%s",
            fmt_short(announced_identity.hash),
            fmt_short(destination_hash),
        )
        self.room.connect_async(announced_identity.hash, announced_identity)


class _Room:
    def __init__(self, transport: RnsTransport, topic: bytes) -> None:
        self.transport = transport
        self.topic = topic
        self.topic_hex = fmt_topic(topic)
        self.dest_name = ".".join((transport.config.app_name, ROOM_ASPECT, self.topic_hex))
        self.log = logging.getLogger("rchat.room")

        self.events = EventStream()
        self.joined = threading.Event()
        self.closed = False

        self._lock = threading.RLock()
        self.links: dict[bytes, RNS.Link] = {}
        self._pending: dict[bytes, RNS.Link | None] = {}
        self._seen: OrderedDict[bytes, None] = OrderedDict()

        self.destination: RNS.Destination | None = None
        self.announce_handler = _AnnounceHandler(self)

    # -- setup -----------------------------------------------------------

    def open(self) -> None:
        ident = self.transport.identity
        self.destination = RNS.Destination(
            ident,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            self.transport.config.app_name,
            ROOM_ASPECT,
            self.topic_hex,
        )
        self.destination.set_link_established_callback(self._on_inbound_link)
        RNS.Transport.register_announce_handler(self.announce_handler)

        if self.transport.config.announce_on_start:
            self.announce()

    def announce(self) -> None:
        if self.destination is None:
            return
        try:
            self.destination.announce(app_data=encode({"proto": "rchat", "v": 1}))
        except Exception:
            self.log.exception("Announce failed")

    def dest_hash_for(self, node_id: bytes) -> bytes:
        return RNS.Destination.hash(
            node_id, self.transport.config.app_name, ROOM_ASPECT, self.topic_hex
        )

    # -- outbound links --------------------------------------------------

    def connect_async(self, node_id: bytes, identity: RNS.Identity | None = None) -> None:
        if node_id == self.transport.identity.hash:
            return
        with self._lock:
            if self.closed or node_id in self.links or node_id in self._pending:
                return
            self._pending[node_id] = None

        threading.Thread(
            target=self._connect,
            args=(node_id, identity),
            name=f"rchat-connect-{fmt_short(node_id)}",
            daemon=True,
        ).start()

    def _wait_for_path(self, dest_hash: bytes) -> bool:
        if RNS.Transport.has_path(dest_hash):
            return True
        RNS.Transport.request_path(dest_hash)
        timeout = float(self.transport.config.path_timeout_s)
        deadline = time.monotonic() + timeout if timeout > 0 else None
        while not RNS.Transport.has_path(dest_hash):
            if self.closed:
                return False
            if deadline is not None and time.monotonic() > deadline:
                return False
            time.sleep(0.1)
        return True

    def _connect(self, node_id: bytes, identity: RNS.Identity | None) -> None:
        dest_hash = self.dest_hash_for(node_id)
        try:
            has_path = self._wait_for_path(dest_hash)
            if identity is None:
                identity = RNS.Identity.recall(dest_hash)
            if identity is None:
                self.log.warning(
                    "No route or identity for peer=%s (path=%s)",
                    fmt_short(node_id),
                    has_path,
                )
                with self._lock:
                    self._pending.pop(node_id, None)
                return

            out = RNS.Destination(
                identity,
                RNS.Destination.OUT,
                RNS.Destination.SINGLE,
                self.transport.config.app_name,
                ROOM_ASPECT,
                self.topic_hex,
            )
            link = RNS.Link(
                out,
                established_callback=lambda established: self._on_outbound_established(
                    node_id, established
                ),
                closed_callback=lambda closed_link: self._on_link_closed(
                    node_id, closed_link
                ),
            )
            with self._lock:
                stale = self.closed
                # The link may already be up if establishment raced us here.
                if not stale and node_id not in self.links:
                    self._pending[node_id] = link
            if stale:
                link.teardown()
                return
            self.log.info("Connecting to peer=%s", fmt_short(node_id))
        except Exception:
            self.log.exception("Connect failed peer=%s", fmt_short(node_id))
            with self._lock:
                self._pending.pop(node_id, None)

    def _on_outbound_established(self, node_id: bytes, link: RNS.Link) -> None:
        # Let the remote side learn who we are.
        link.identify(self.transport.identity)
        link.set_packet_callback(lambda data, pkt: self._on_frame(node_id, data))
        self._add_neighbor(node_id, link)

    # -- inbound links ---------------------------------------------------

    def _on_inbound_link(self, link: RNS.Link) -> None:
        link.set_remote_identified_callback(self._on_remote_identified)
        self.log.debug("Inbound link established, awaiting identification")

    def _on_remote_identified(self, link: RNS.Link, identity: RNS.Identity | None) -> None:
        if identity is None:
            return
        node_id = identity.hash
        link.set_packet_callback(lambda data, pkt: self._on_frame(node_id, data))
        link.set_link_closed_callback(
            lambda closed_link: self._on_link_closed(node_id, closed_link)
        )
        self._add_neighbor(node_id, link)

    # -- neighbor bookkeeping --------------------------------------------

    def _add_neighbor(self, node_id: bytes, link: RNS.Link) -> None:
        with self._lock:
            if self.closed:
                teardown = True
            else:
                teardown = False
                self._pending.pop(node_id, None)
                replaced = self.links.get(node_id)
                self.links[node_id] = link
        if teardown:
            link.teardown()
            return
        if replaced is not None and replaced is not link:
            # Both sides linked to each other; keep the newest link only.
            self.log.debug("Replacing link to peer=%s", fmt_short(node_id))
            try:
                replaced.teardown()
            except Exception:
                pass
            return
        self.log.info("Neighbor up peer=%s", fmt_short(node_id))
        self.events.push(NeighborUp(node_id))
        self.joined.set()

    def _on_link_closed(self, node_id: bytes, link: RNS.Link) -> None:
        with self._lock:
            self._pending.pop(node_id, None)
            if self.links.get(node_id) is not link:
                return
            del self.links[node_id]
            closed = self.closed
        self.log.info("Neighbor down peer=%s", fmt_short(node_id))
        if not closed:
            self.events.push(NeighborDown(node_id))

    # -- frames ----------------------------------------------------------

    def _mark_seen(self, fid: bytes) -> bool:
        """Record ``fid``; return False if it was already seen."""
        with self._lock:
            if fid in self._seen:
                return False
            self._seen[fid] = None
            while len(self._seen) > SEEN_FRAMES_MAX:
                self._seen.popitem(last=False)
            return True

    def _on_frame(self, node_id: bytes, data: bytes) -> None:
        try:
            frame = decode(data)
            fid = frame[F_ID]
            payload = frame[F_PAYLOAD]
            if not isinstance(fid, bytes) or len(fid) != FRAME_ID_LEN:
                raise ValueError("bad frame id")
            if not isinstance(payload, bytes):
                raise ValueError("bad frame payload")
        except Exception as e:
            self.log.debug(
                "Bad frame peer=%s bytes=%s err=%s", fmt_short(node_id), len(data), e
            )
            return

        if not self._mark_seen(fid):
            return

        self.events.push(Received(content=payload, delivered_from=node_id))
        self._send_frame(data, exclude=node_id)

    def _send_frame(self, frame: bytes, exclude: bytes | None = None) -> int:
        with self._lock:
            targets = [(n, link) for n, link in self.links.items() if n != exclude]

        sent = 0
        for node_id, link in targets:
            try:
                RNS.Packet(link, frame).send()
                sent += 1
            except OSError as e:
                self.log.warning(
                    "Send failed peer=%s bytes=%s err=%s",
                    fmt_short(node_id),
                    len(frame),
                    e,
                )
            except Exception:
                self.log.debug(
                    "Send failed peer=%s bytes=%s",
                    fmt_short(node_id),
                    len(frame),
                    exc_info=True,
                )
        return sent

    def broadcast(self, payload: bytes) -> None:
        if self.closed:
            raise TransportError("room is closed")

        fid = os.urandom(FRAME_ID_LEN)
        frame = encode({F_ID: fid, F_PAYLOAD: bytes(payload)})
        if len(frame) > RNS.Link.MDU:
            raise TransportError(
                f"message too large ({len(frame)} bytes, link MDU is {RNS.Link.MDU})"
            )

        self._mark_seen(fid)
        sent = self._send_frame(frame)
        self.log.debug("Broadcast bytes=%s neighbors=%s", len(frame), sent)

    def close(self) -> None:
        with self._lock:
            if self.closed:
                return
            self.closed = True
            links = list(self.links.values()) + [
                pending for pending in self._pending.values() if pending is not None
            ]
            self.links.clear()
            self._pending.clear()

        try:
            RNS.Transport.deregister_announce_handler(self.announce_handler)
        except Exception:
            self.log.debug("Announce handler deregistration failed", exc_info=True)

        for link in links:
            try:
                link.teardown()
            except Exception:
                pass

        self.events.end()


class _RoomSender:
    def __init__(self, room: _Room) -> None:
        self._room = room

    def broadcast(self, payload: bytes) -> None:
        self._room.broadcast(payload)


class RnsTransport:
    def __init__(self, config: ChatRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("rchat.transport")
        self.identity: RNS.Identity | None = None
        self._peers: dict[bytes, NodeAddress] = {}
        self._room: _Room | None = None
        self._announce_thread: threading.Thread | None = None
        self._shutdown = threading.Event()

    def start(self) -> None:
        self.log.info("Starting Reticulum")
        RNS.Reticulum(configdir=self.config.configdir)

        if not self.config.identity_path:
            raise TransportError("identity_path is not set")
        self.identity = self._load_identity(self.config.identity_path)

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if not os.path.exists(p):
            raise TransportError(f"Identity not found at {p}")
        ident = RNS.Identity.from_file(p)
        if ident is None:
            raise TransportError(f"Failed to load identity from {p}")
        return ident

    def local_address(self) -> NodeAddress:
        if self.identity is None:
            raise TransportError("transport is not started")
        return NodeAddress(
            node_id=self.identity.hash, public_key=self.identity.get_public_key()
        )

    def add_peer_address(self, address: NodeAddress) -> None:
        self._peers[address.node_id] = address
        self.log.debug(
            "Address book add peer=%s key=%s",
            address.short(),
            address.public_key is not None,
        )

    def remember_peer(self, node_id: bytes, dest_hash: bytes) -> None:
        """Hand a known public key to Reticulum so no announce is needed."""
        address = self._peers.get(node_id)
        if address is None or address.public_key is None:
            return
        if RNS.Identity.recall(dest_hash) is not None:
            return
        try:
            RNS.Identity.remember(
                RNS.Identity.full_hash(address.public_key),
                dest_hash,
                address.public_key,
            )
        except Exception as e:
            raise TransportError(f"cannot register peer {address.short()}: {e}") from e

    def subscribe(self, topic: bytes, bootstrap: list[bytes]) -> Subscription:
        if self.identity is None:
            raise TransportError("transport is not started")
        if self._room is not None:
            raise TransportError("already subscribed to a room")

        room = _Room(self, topic)
        self._room = room
        try:
            room.open()
        except Exception as e:
            raise TransportError(f"cannot open room destination: {e}") from e

        self.log.info(
            "Room open dest_name=%s dest_hash=%s",
            room.dest_name,
            room.destination.hash.hex() if room.destination else "-",
        )

        if self.config.announce_period_s and self.config.announce_period_s > 0:
            self._announce_thread = threading.Thread(
                target=self._announce_loop, name="rchat-announce", daemon=True
            )
            self._announce_thread.start()

        if bootstrap:
            try:
                # Every bootstrap peer goes into the address book before any
                # connection attempt starts.
                for node_id in bootstrap:
                    self.remember_peer(node_id, room.dest_hash_for(node_id))
            except TransportError:
                room.close()
                raise

            for node_id in bootstrap:
                room.connect_async(node_id)

            timeout = float(self.config.join_timeout_s)
            if not room.joined.wait(timeout if timeout > 0 else None):
                room.close()
                raise TransportError(
                    f"no peer reachable within {timeout:g}s ({len(bootstrap)} tried)"
                )
        else:
            room.joined.set()

        return Subscription(sender=_RoomSender(room), receiver=room.events)

    def _announce_loop(self) -> None:
        while not self._shutdown.wait(float(self.config.announce_period_s)):
            if self._room is not None:
                self._room.announce()

    def close(self) -> None:
        self._shutdown.set()
        if self._room is not None:
            self._room.close()
