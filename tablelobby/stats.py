"""Statistics tracking and reporting for a lobby peer."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import LobbyService


class StatsManager:
    """
    Lifetime counters for a lobby peer.

    Tracks:
    - Notifications received and ignored
    - Announcements sent and captured
    - Join requests sent, accepted and timed out
    - Members admitted to owned tables
    - Table messages and leaves
    """

    def __init__(self, lobby: LobbyService) -> None:
        self.lobby = lobby

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "notifications_in": 0,
            "notifications_ignored": 0,
            "announces_out": 0,
            "tables_captured": 0,
            "captures_rejected": 0,
            "join_requests_out": 0,
            "joins_accepted": 0,
            "joins_rejected": 0,
            "join_timeouts": 0,
            "members_admitted": 0,
            "table_msgs_in": 0,
            "table_msgs_out": 0,
            "leaves_in": 0,
            "leaves_out": 0,
            "send_failures": 0,
        }

    def set_start_time(self) -> None:
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self.lobby._state_lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self.lobby._state_lock:
            return int(self._counters.get(key, 0))

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        started_mono = self.started_monotonic
        uptime_s = (time.monotonic() - started_mono) if started_mono is not None else 0.0

        with self.lobby._state_lock:
            table_stats = self.lobby.registry.get_stats()
            cache_stats = self.lobby.cache.get_stats()
            beacons = len(self.lobby.beacons)
            pending = len(self.lobby.negotiator)
            c = dict(self._counters)

        cfg = self.lobby.config
        lines: list[str] = []
        lines.append(f"tablelobby {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f} peer={self.lobby.peer_id or '-'}")
        lines.append(
            f"tables: joined={table_stats['joined_tables']} "
            f"open={table_stats['open_tables']} beacons={beacons} pending_joins={pending}"
        )
        lines.append(
            f"cache: captured={cache_stats['captured_tables']} "
            f"announcers={cache_stats['announcers']} capture={cfg.capture_new_tables} "
            f"max={cfg.max_captured_tables} per_peer={cfg.max_captures_per_peer}"
        )
        lines.append(
            "io: notifications_in={} ignored={} announces_out={} send_failures={}".format(
                c.get("notifications_in", 0),
                c.get("notifications_ignored", 0),
                c.get("announces_out", 0),
                c.get("send_failures", 0),
            )
        )
        lines.append(
            "joins: requested={} accepted={} rejected={} timeouts={} admitted={}".format(
                c.get("join_requests_out", 0),
                c.get("joins_accepted", 0),
                c.get("joins_rejected", 0),
                c.get("join_timeouts", 0),
                c.get("members_admitted", 0),
            )
        )
        lines.append(
            "tables_io: msgs_in={} msgs_out={} leaves_in={} leaves_out={} captured={} capture_rejected={}".format(
                c.get("table_msgs_in", 0),
                c.get("table_msgs_out", 0),
                c.get("leaves_in", 0),
                c.get("leaves_out", 0),
                c.get("tables_captured", 0),
                c.get("captures_rejected", 0),
            )
        )

        return "\n".join(lines)
