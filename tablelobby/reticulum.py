"""Lobby transport over Reticulum.

Each peer hosts a SINGLE destination named by ``dest_name``; its hash (hex) is
the peer id. Broadcasts go out as packets to the PLAIN destination
``<dest_name>.broadcast``, which every peer on the local segment listens on.
Direct sends are encrypted single packets to a recipient's destination, which
is resolved from the identity learned through that peer's announce. Frames for
a peer that has not announced yet wait, briefly, for its announce; every peer
also re-announces every ``announce_period_s``.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Iterable
from typing import Any

import RNS

from .codec import decode, encode
from .config import LobbyRuntimeConfig
from .constants import PENDING_SEND_TTL_S, PENDING_SENDS_PER_PEER
from .envelope import make_notification
from .paths import expand_path
from .transport import Transport


class _PeerAnnounceHandler:
    def __init__(self, transport: ReticulumTransport, aspect_filter: str) -> None:
        self.transport = transport
        self.aspect_filter = aspect_filter

    def received_announce(self, destination_hash, announced_identity, app_data) -> None:
        self.transport._on_peer_announce(destination_hash, announced_identity, app_data)


class ReticulumTransport(Transport):
    def __init__(self, config: LobbyRuntimeConfig) -> None:
        super().__init__()
        self.config = config
        self.log = logging.getLogger("tablelobby.transport")

        self.identity: RNS.Identity | None = None
        self.destination: RNS.Destination | None = None
        self.broadcast_in: RNS.Destination | None = None
        self.broadcast_out: RNS.Destination | None = None

        self._announce_handler: _PeerAnnounceHandler | None = None
        self._announce_thread: threading.Thread | None = None
        self._closed = threading.Event()

        self._peers_lock = threading.Lock()
        self._peers: dict[bytes, float] = {}
        # Frames waiting for a recipient's announce: hash -> [(queued_at, data)]
        self._pending: dict[bytes, list[tuple[float, bytes]]] = {}

    @property
    def peer_id(self) -> str | None:
        if self.destination is None:
            return None
        return self.destination.hash.hex()

    def _name_parts(self) -> tuple[str, list[str]]:
        parts = [p for p in str(self.config.dest_name).split(".") if p]
        if not parts:
            raise ValueError("dest_name must not be empty")
        return parts[0], parts[1:]

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if not os.path.exists(p):
            raise RuntimeError(f"Identity not found at {p}")
        ident = RNS.Identity.from_file(p)
        if ident is None:
            raise RuntimeError(f"Failed to load identity from {p}")
        return ident

    def connect(self, endpoint: Any = None) -> str:
        """Start Reticulum using ``endpoint`` as its config directory."""
        configdir = endpoint if endpoint is not None else self.config.configdir
        self.log.info("Starting Reticulum configdir=%s", configdir or "-")
        RNS.Reticulum(configdir=configdir, require_shared_instance=False)

        if not self.config.identity_path:
            raise RuntimeError("identity_path is not set")
        self.identity = self._load_identity(self.config.identity_path)

        app_name, aspects = self._name_parts()
        self.destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            app_name,
            *aspects,
        )
        self.destination.set_packet_callback(self._on_packet)

        self.broadcast_in = RNS.Destination(
            None, RNS.Destination.IN, RNS.Destination.PLAIN, app_name, *aspects, "broadcast"
        )
        self.broadcast_in.set_packet_callback(self._on_packet)
        self.broadcast_out = RNS.Destination(
            None, RNS.Destination.OUT, RNS.Destination.PLAIN, app_name, *aspects, "broadcast"
        )

        self._announce_handler = _PeerAnnounceHandler(self, ".".join([app_name, *aspects]))
        RNS.Transport.register_announce_handler(self._announce_handler)

        if self.config.announce_on_start:
            self.announce()

        self._closed.clear()
        if self.config.announce_period_s and self.config.announce_period_s > 0:
            self._announce_thread = threading.Thread(
                target=self._announce_loop,
                name="tablelobby-announce",
                daemon=True,
            )
            self._announce_thread.start()

        self.log.info("Lobby transport ready peer=%s", self.peer_id)
        return self.peer_id or ""

    def announce(self) -> None:
        if self.destination is None:
            return
        try:
            self.destination.announce(app_data=encode({"proto": "tablelobby", "v": 1}))
        except Exception:
            self.log.exception("Announce failed")

    def _announce_loop(self) -> None:
        # Peers that came up after us only learn our identity from an announce.
        while not self._closed.wait(float(self.config.announce_period_s)):
            self.announce()

    def close(self) -> None:
        self._closed.set()
        if self._announce_handler is not None:
            try:
                RNS.Transport.deregister_announce_handler(self._announce_handler)
            except Exception:
                self.log.debug("Announce handler removal failed", exc_info=True)
            self._announce_handler = None

    def broadcast(self, payload: dict) -> None:
        if self.broadcast_out is None:
            raise RuntimeError("transport is not connected")
        self._send_packet(self.broadcast_out, self._frame(payload), "broadcast")

    def send(self, payload: dict, recipients: Iterable[str]) -> None:
        data = self._frame(payload)
        for peer_id in recipients:
            dest = self._resolve(peer_id)
            if dest is None:
                self._hold(peer_id, data)
                continue
            self._send_packet(dest, data, peer_id[:12])

    def _hold(self, peer_id: str, data: bytes) -> None:
        """Keep a frame for a peer whose path was requested but is not known yet."""
        try:
            dest_hash = bytes.fromhex(peer_id)
        except ValueError:
            self.log.warning("Bad peer id=%r; message dropped", peer_id)
            return

        now = time.monotonic()
        with self._peers_lock:
            queue = [
                (at, d)
                for at, d in self._pending.get(dest_hash, [])
                if now - at < PENDING_SEND_TTL_S
            ]
            queue.append((now, data))
            if len(queue) > PENDING_SENDS_PER_PEER:
                queue.pop(0)
                self.log.warning("Send queue full for peer=%s; oldest dropped", peer_id[:12])
            self._pending[dest_hash] = queue
        self.log.info("No path to peer=%s yet; queued=%s", peer_id[:12], len(queue))

    def _release(self, dest_hash: bytes) -> None:
        with self._peers_lock:
            queue = self._pending.pop(dest_hash, [])
        if not queue:
            return

        peer_id = dest_hash.hex()
        dest = self._resolve(peer_id)
        if dest is None:
            with self._peers_lock:
                self._pending[dest_hash] = queue + self._pending.get(dest_hash, [])
            return
        now = time.monotonic()
        for at, data in queue:
            if now - at < PENDING_SEND_TTL_S:
                self._send_packet(dest, data, peer_id[:12])

    def _frame(self, payload: dict) -> bytes:
        return encode(make_notification(self.peer_id or "", payload))

    def _resolve(self, peer_id: str) -> RNS.Destination | None:
        try:
            dest_hash = bytes.fromhex(peer_id)
        except ValueError:
            return None
        ident = RNS.Identity.recall(dest_hash)
        if ident is None:
            RNS.Transport.request_path(dest_hash)
            return None
        app_name, aspects = self._name_parts()
        return RNS.Destination(
            ident, RNS.Destination.OUT, RNS.Destination.SINGLE, app_name, *aspects
        )

    def _send_packet(self, dest: RNS.Destination, data: bytes, label: str) -> None:
        try:
            RNS.Packet(dest, data).send()
        except OSError as e:
            # Common failure mode on low-MTU interfaces: packet too large.
            self.log.warning("Send failed to=%s bytes=%s err=%s", label, len(data), e)

    def _on_packet(self, data: bytes, packet) -> None:
        try:
            env = decode(data)
        except Exception as e:
            self.log.debug("Undecodable packet bytes=%s err=%s", len(data), e)
            return
        self._deliver(env)

    def _on_peer_announce(self, destination_hash, announced_identity, app_data) -> None:
        if self.destination is not None and destination_hash == self.destination.hash:
            return
        with self._peers_lock:
            first_seen = destination_hash not in self._peers
            self._peers[destination_hash] = time.monotonic()
        if first_seen:
            self.log.info("Discovered peer=%s", RNS.prettyhexrep(destination_hash))
        self._release(destination_hash)
