"""Bounded cache of tables announced by other peers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .tables import Table, is_valid_table

if TYPE_CHECKING:
    from .service import LobbyService


@dataclass
class AnnouncementCacheEntry:
    announcer: str
    table: Table


class AnnouncementCache:
    """
    Most-recent-first store of discovered tables.

    Limits are read from the lobby config on every capture:
    - max_captured_tables: total entries; the oldest is evicted past this
    - max_captures_per_peer: entries any single announcer may hold
    """

    def __init__(self, lobby: LobbyService) -> None:
        self.lobby = lobby
        self.log = logging.getLogger("tablelobby.cache")
        self._entries: list[AnnouncementCacheEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> list[AnnouncementCacheEntry]:
        return [AnnouncementCacheEntry(e.announcer, e.table.copy()) for e in self._entries]

    def tables(self) -> list[Table]:
        return [e.table.copy() for e in self._entries]

    def count_for(self, announcer: str) -> int:
        return sum(1 for e in self._entries if e.announcer == announcer)

    def capture(self, announcer: str, table: Table) -> bool:
        """Store an announced table. Returns False if it was not captured.

        Only a table's owner may announce it. Entries are identified by
        ``(owner_peer_id, table_id)``.
        """
        if not is_valid_table(table):
            return False
        if table.owner_peer_id != announcer:
            self.log.debug(
                "Announcement not from owner announcer=%s owner=%s table_id=%s",
                announcer[:12],
                table.owner_peer_id[:12],
                table.table_id,
            )
            return False

        for e in self._entries:
            if (
                e.table.owner_peer_id == table.owner_peer_id
                and e.table.table_id == table.table_id
            ):
                self.log.debug(
                    "Duplicate announcement owner=%s table_id=%s",
                    table.owner_peer_id[:12],
                    table.table_id,
                )
                return False

        per_peer = self.count_for(announcer)
        quota = int(self.lobby.config.max_captures_per_peer)
        if per_peer >= quota:
            self.log.debug(
                "Announcer over quota announcer=%s cached=%s quota=%s",
                announcer[:12],
                per_peer,
                quota,
            )
            return False

        self._entries.insert(0, AnnouncementCacheEntry(announcer, table.copy()))

        capacity = int(self.lobby.config.max_captured_tables)
        if len(self._entries) > capacity:
            evicted = self._entries.pop()
            self.log.debug(
                "Evicted oldest announcement announcer=%s table_id=%s",
                evicted.announcer[:12],
                evicted.table.table_id,
            )

        self.log.info("Captured %s from %s", table, announcer[:12])
        return True

    def get_stats(self) -> dict[str, Any]:
        return {
            "captured_tables": len(self._entries),
            "announcers": len({e.announcer for e in self._entries}),
        }
