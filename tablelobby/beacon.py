"""Periodic re-announcement of owned tables that still have open slots."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from .constants import M_NEW_TABLE
from .messages import build_table_message
from .outbox import Outbox
from .tables import Table

if TYPE_CHECKING:
    from .service import LobbyService


class Beacon:
    """Announces one owned table until it fills up.

    A beacon that has stopped is never restarted.
    """

    def __init__(self, scheduler: BeaconScheduler, table: Table) -> None:
        self.scheduler = scheduler
        self.key = table.key
        self.active = True
        self._timer: threading.Timer | None = None

    def fire(self, outbox: Outbox) -> bool:
        """Queue an announcement of the table's current state.

        Must be called with the state lock held. Returns False, and stops the
        beacon, once the table is full or no longer joined.
        """
        if not self.active:
            return False

        lobby = self.scheduler.lobby
        owner, table_id, table_name = self.key
        table = lobby.registry.find(table_id, table_name, owner)
        if table is None or table.is_full:
            self.scheduler.log.info(
                "Beacon stopped table_id=%s reason=%s",
                table_id,
                "gone" if table is None else "full",
            )
            self.cancel()
            return False

        outbox.broadcast(build_table_message(M_NEW_TABLE, table))
        lobby.stats_manager.inc("announces_out")
        self._schedule()
        return True

    def tick(self) -> None:
        """Timer callback."""
        lobby = self.scheduler.lobby
        outbox = Outbox()
        with lobby._state_lock:
            self.fire(outbox)
        lobby._flush(outbox)

    def cancel(self) -> None:
        self.active = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.scheduler._discard(self)

    def _schedule(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        interval_s = max(0.0, float(self.scheduler.lobby.config.beacon_interval_ms) / 1000.0)
        self._timer = threading.Timer(interval_s, self.tick)
        self._timer.name = f"tablelobby-beacon-{self.key[1]}"
        self._timer.daemon = True
        self._timer.start()


class BeaconScheduler:
    def __init__(self, lobby: LobbyService) -> None:
        self.lobby = lobby
        self.log = logging.getLogger("tablelobby.beacon")
        self._beacons: dict[tuple[str, str, str], Beacon] = {}

    def __len__(self) -> int:
        return len(self._beacons)

    def start(self, table: Table, outbox: Outbox) -> Beacon:
        """Start announcing ``table``; the first announcement is queued right away."""
        existing = self._beacons.get(table.key)
        if existing is not None:
            return existing

        beacon = Beacon(self, table)
        self._beacons[table.key] = beacon
        self.log.debug(
            "Beacon started table_id=%s interval_ms=%s",
            table.table_id,
            self.lobby.config.beacon_interval_ms,
        )
        beacon.fire(outbox)
        return beacon

    def get(self, table: Table) -> Beacon | None:
        return self._beacons.get(table.key)

    def cancel_all(self) -> None:
        for beacon in list(self._beacons.values()):
            beacon.cancel()

    def _discard(self, beacon: Beacon) -> None:
        if self._beacons.get(beacon.key) is beacon:
            self._beacons.pop(beacon.key, None)
