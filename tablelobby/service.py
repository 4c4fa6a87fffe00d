from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future
from dataclasses import replace
from typing import Any

from .beacon import BeaconScheduler
from .cache import AnnouncementCache
from .config import RUNTIME_FIELDS, LobbyRuntimeConfig
from .constants import M_LEAVE_TABLE, M_NEW_TABLE
from .errors import NotConnectedError
from .events import EventDispatcher, Listener
from .messages import build_chat_message, build_table_message
from .negotiation import JoinNegotiator
from .outbox import Outbox
from .router import MessageRouter
from .stats import StatsManager
from .tables import Table, TableRegistry, build_slots, is_valid_table, new_table_id
from .transport import Transport


class LobbyService:
    """A peer's view of the table lobby.

    Owns the table registry, the announcement cache, beacons and pending join
    requests, and is the only place they are mutated from.
    """

    def __init__(
        self,
        config: LobbyRuntimeConfig,
        transport: Transport,
        *,
        crypto: Any = None,
    ) -> None:
        self.config = config
        self.log = logging.getLogger("tablelobby.service")

        # Inbound notifications and timers arrive on transport and timer
        # threads. Guard all lobby state with a single re-entrant lock.
        self._state_lock = threading.RLock()
        self._shutdown = threading.Event()

        self.transport = transport
        self._crypto = crypto
        self._connected = False

        self.stats_manager = StatsManager(self)
        self.events = EventDispatcher()
        self.registry = TableRegistry()
        self.cache = AnnouncementCache(self)
        self.beacons = BeaconScheduler(self)
        self.negotiator = JoinNegotiator(self)
        self.router = MessageRouter(self)

        self.transport.set_message_callback(self._on_notification)

    # Properties

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def peer_id(self) -> str | None:
        return self.transport.peer_id

    @property
    def crypto(self) -> Any:
        return self._crypto

    @property
    def open_tables(self) -> bool:
        with self._state_lock:
            return self.registry.open_tables

    @property
    def joined_tables(self) -> list[Table]:
        with self._state_lock:
            return self.registry.all()

    @property
    def announced_tables(self) -> list[Table]:
        with self._state_lock:
            return self.cache.tables()

    @property
    def capture_new_tables(self) -> bool:
        return self.config.capture_new_tables

    @capture_new_tables.setter
    def capture_new_tables(self, value: bool) -> None:
        self.update_config(capture_new_tables=bool(value))

    @property
    def max_captured_tables(self) -> int:
        return self.config.max_captured_tables

    @max_captured_tables.setter
    def max_captured_tables(self, value: int) -> None:
        self.update_config(max_captured_tables=int(value))

    @property
    def max_captures_per_peer(self) -> int:
        return self.config.max_captures_per_peer

    @max_captures_per_peer.setter
    def max_captures_per_peer(self, value: int) -> None:
        self.update_config(max_captures_per_peer=int(value))

    @property
    def beacon_interval_ms(self) -> int:
        return self.config.beacon_interval_ms

    @beacon_interval_ms.setter
    def beacon_interval_ms(self, value: int) -> None:
        self.update_config(beacon_interval_ms=int(value))

    @property
    def join_timeout_ms(self) -> int:
        return self.config.join_timeout_ms

    @join_timeout_ms.setter
    def join_timeout_ms(self, value: int) -> None:
        self.update_config(join_timeout_ms=int(value))

    def update_config(self, **changes: Any) -> LobbyRuntimeConfig:
        """Change lobby settings. None of them require reconnecting."""
        unknown = set(changes) - RUNTIME_FIELDS
        if unknown:
            raise ValueError(f"not a runtime setting: {', '.join(sorted(unknown))}")
        with self._state_lock:
            self.config = replace(self.config, **changes)
        for key, value in changes.items():
            self.log.info("Config %s=%r", key, value)
        return self.config

    def add_listener(self, event: str, callback: Listener) -> None:
        self.events.add_listener(event, callback)

    def remove_listener(self, event: str, callback: Listener) -> bool:
        return self.events.remove_listener(event, callback)

    # Lifecycle

    def start(self, endpoint: Any = None) -> str | None:
        """Connect the transport. Returns the peer id, or None if connecting failed."""
        self.log.info("Starting lobby")
        target = endpoint if endpoint is not None else self.config.configdir
        try:
            result = self.transport.connect(target)
        except Exception:
            self.log.exception("Transport connect failed")
            self._connected = False
            return None

        self._connected = True
        self._shutdown.clear()
        self.stats_manager.set_start_time()
        self.log.info("Lobby running peer=%s", self.peer_id)
        return result

    def run_forever(self) -> None:
        if not self._connected and self.start() is None:
            raise RuntimeError("lobby transport failed to connect")

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        self._shutdown.set()
        outbox = Outbox()
        with self._state_lock:
            self.beacons.cancel_all()
            self.negotiator.cancel_all(outbox)
        self._flush(outbox)
        try:
            self.transport.close()
        except Exception:
            self.log.debug("Transport close failed", exc_info=True)
        self._connected = False
        self.log.info("Lobby stopped")

    def _require_connected(self) -> None:
        if not self._connected:
            raise NotConnectedError()

    # Tables

    def create_table(
        self,
        table_name: str,
        slots: int | Sequence[str],
        table_info: dict[str, Any] | None = None,
        table_id: str | None = None,
        announce: bool = True,
    ) -> Table:
        """Create and join a new owned table.

        ``slots`` is either the number of seats any peer may take or an ordered
        list of peer ids and ``"*"`` wildcards. With ``announce`` the table is
        announced immediately and then every ``beacon_interval_ms`` until full.
        """
        self._require_connected()
        self_id = self.peer_id or ""

        table = Table(
            owner_peer_id=self_id,
            table_id=table_id if table_id is not None else new_table_id(),
            table_name=str(table_name) if table_name is not None else "",
            required_slots=build_slots(slots),
            joined_peers=[self_id],
            table_info=dict(table_info) if table_info is not None else {},
        )

        outbox = Outbox()
        with self._state_lock:
            self.registry.add(table)
            self.registry.open_tables = True
            if announce:
                self.beacons.start(table, outbox)
            created = table.copy()
        self._flush(outbox)

        self.log.info("Created %s slots=%s", created, len(created.required_slots))
        return created

    def announce_table(self, table: Table) -> bool:
        """Announce an owned table once. Full tables are never announced."""
        self._require_connected()
        if not is_valid_table(table):
            return False

        outbox = Outbox()
        with self._state_lock:
            live = self.registry.find(table.table_id, table.table_name, table.owner_peer_id)
            source = live if live is not None else table
            if source.owner_peer_id != self.peer_id or source.is_full:
                return False
            outbox.broadcast(build_table_message(M_NEW_TABLE, source))
            self.stats_manager.inc("announces_out")
        self._flush(outbox)
        return True

    def join_table(self, table: Table, timeout_ms: float | None = None) -> Future:
        """Ask the owner of ``table`` for a seat.

        Returns a future that resolves to the joined table, or fails with
        ``JoinRejectedError`` (``JoinTimeoutError`` if the owner never answers).
        """
        self._require_connected()
        if timeout_ms is None:
            timeout_ms = self.config.join_timeout_ms

        outbox = Outbox()
        with self._state_lock:
            future = self.negotiator.begin(table, timeout_ms, outbox)
        self._flush(outbox)
        return future

    def leave_joined_table(self, table: Table) -> bool:
        self._require_connected()
        if not is_valid_table(table):
            self.log.debug("leave_joined_table: not a valid table")
            return False

        outbox = Outbox()
        with self._state_lock:
            removed = self.registry.remove(table)
            if removed is None:
                return False
            outbox.send(
                build_table_message(M_LEAVE_TABLE, removed), self.other_members(removed)
            )
            self.stats_manager.inc("leaves_out")
            self.registry.recompute_open(self.peer_id)
        self._flush(outbox)

        self.log.info("Left %s", removed)
        return True

    def get_joined_tables(
        self,
        table_name: str | None = None,
        table_id: str | None = None,
        owner_peer_id: str | None = None,
    ) -> list[Table]:
        with self._state_lock:
            return self.registry.filter(
                table_name=table_name, table_id=table_id, owner_peer_id=owner_peer_id
            )

    def send_to_table(self, table: Table, message: Any) -> bool:
        self._require_connected()
        if not is_valid_table(table):
            self.log.debug("send_to_table: not a valid table")
            return False
        if message is None:
            self.log.debug("send_to_table: no message")
            return False

        outbox = Outbox()
        outbox.send(build_chat_message(table, message), self.other_members(table))
        self.stats_manager.inc("table_msgs_out")
        self._flush(outbox)
        return True

    def other_members(self, table: Table) -> list[str]:
        """The table's joined peers, without this peer."""
        self_id = self.peer_id
        return [p for p in table.joined_peers if p != self_id]

    # Inbound

    def _on_notification(self, env: dict) -> None:
        outbox = Outbox()
        with self._state_lock:
            self.router.route_notification(env, outbox)
        self._flush(outbox)

    def _flush(self, outbox: Outbox) -> None:
        """Perform queued side effects. Must be called without the state lock."""
        for action, args in outbox.items:
            if action == "broadcast":
                self._transport_call(self.transport.broadcast, *args)
            elif action == "send":
                payload, recipients = args
                if recipients:
                    self._transport_call(self.transport.send, payload, recipients)
            elif action == "emit":
                self.events.emit(*args)
            elif action == "call":
                fn, *rest = args
                fn(*rest)
        outbox.items.clear()

    def _transport_call(self, fn: Callable[..., Any], *args: Any) -> None:
        try:
            fn(*args)
        except OSError as e:
            self.stats_manager.inc("send_failures")
            self.log.warning("Send failed err=%s", e)
        except Exception:
            self.stats_manager.inc("send_failures")
            self.log.debug("Send failed", exc_info=True)
