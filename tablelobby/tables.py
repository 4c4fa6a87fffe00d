"""Table model and the local registry of joined tables.

This module handles:
- The Table record and its wire form
- Table validity checks applied before any mutation
- The registry of tables this peer has joined (owned ones included)
- The "has open owned tables" flag
"""

from __future__ import annotations

import copy
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .constants import (
    K_INFO,
    K_JOINED,
    K_OWNER,
    K_REQUIRED,
    K_TABLE_ID,
    K_TABLE_NAME,
    WILDCARD,
)


def new_table_id() -> str:
    return os.urandom(8).hex()


@dataclass
class Table:
    owner_peer_id: str
    table_id: str
    table_name: str = ""
    required_slots: list[str] = field(default_factory=list)
    joined_peers: list[str] = field(default_factory=list)
    table_info: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.owner_peer_id, self.table_id, self.table_name)

    @property
    def is_full(self) -> bool:
        return len(self.required_slots) == 0

    def same_table(self, other: Table) -> bool:
        return self.key == other.key

    def slot_available_for(self, peer_id: str) -> bool:
        return any(slot == WILDCARD or slot == peer_id for slot in self.required_slots)

    def copy(self) -> Table:
        return Table(
            owner_peer_id=self.owner_peer_id,
            table_id=self.table_id,
            table_name=self.table_name,
            required_slots=list(self.required_slots),
            joined_peers=list(self.joined_peers),
            table_info=copy.deepcopy(self.table_info),
        )

    def to_wire(self) -> dict:
        return {
            K_OWNER: self.owner_peer_id,
            K_TABLE_ID: self.table_id,
            K_TABLE_NAME: self.table_name,
            K_REQUIRED: list(self.required_slots),
            K_JOINED: list(self.joined_peers),
            K_INFO: copy.deepcopy(self.table_info),
        }

    @classmethod
    def from_wire(cls, data: Mapping) -> Table | None:
        """Build a table from message fields, or None if they are not a valid table."""
        if not is_valid_table(data):
            return None
        info = data[K_INFO]
        return cls(
            owner_peer_id=str(data[K_OWNER]),
            table_id=str(data[K_TABLE_ID]),
            table_name=str(data[K_TABLE_NAME]),
            required_slots=[str(s) for s in data[K_REQUIRED]],
            joined_peers=[str(p) for p in data[K_JOINED]],
            table_info=dict(info) if isinstance(info, Mapping) else info,
        )

    def __str__(self) -> str:
        return f"Table({self.table_name!r} id={self.table_id} owner={self.owner_peer_id[:12]})"


_ATTRS = {
    K_OWNER: "owner_peer_id",
    K_TABLE_ID: "table_id",
    K_TABLE_NAME: "table_name",
    K_REQUIRED: "required_slots",
    K_JOINED: "joined_peers",
    K_INFO: "table_info",
}


def _field(obj: Any, wire_key: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(wire_key)
    return getattr(obj, _ATTRS[wire_key], None)


def _is_seq(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def is_valid_table(obj: Any) -> bool:
    """Check a Table, or a table-carrying message map, before using it."""
    if obj is None:
        return False

    for key in (K_OWNER, K_TABLE_ID):
        value = _field(obj, key)
        if not isinstance(value, str) or value == "":
            return False

    # The name may be empty, but must be present.
    if not isinstance(_field(obj, K_TABLE_NAME), str):
        return False

    if not _is_seq(_field(obj, K_REQUIRED)):
        return False
    if not _is_seq(_field(obj, K_JOINED)):
        return False

    info = _field(obj, K_INFO)
    if info is None or info == "":
        return False

    return True


def build_slots(slots: int | Sequence[str]) -> list[str]:
    if isinstance(slots, bool):
        raise TypeError("slots must be a count or a sequence of peer ids")
    if isinstance(slots, int):
        if slots < 0:
            raise ValueError("slot count must not be negative")
        return [WILDCARD] * slots
    if not _is_seq(slots):
        raise TypeError("slots must be a count or a sequence of peer ids")
    return [str(s) for s in slots]


class TableRegistry:
    """Tables this peer has joined, including the ones it owns.

    The registry owns its Table objects. Everything handed out is a copy.
    Callers hold the engine's state lock.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("tablelobby.tables")
        self._tables: list[Table] = []
        self.open_tables = False

    def __len__(self) -> int:
        return len(self._tables)

    def add(self, table: Table) -> None:
        self._tables.append(table)

    def find(
        self, table_id: str, table_name: str, owner_peer_id: str | None = None
    ) -> Table | None:
        """Return the live table (not a copy) matching the given identity."""
        for t in self._tables:
            if t.table_id != table_id or t.table_name != table_name:
                continue
            if owner_peer_id is not None and t.owner_peer_id != owner_peer_id:
                continue
            return t
        return None

    def remove(self, table: Table) -> Table | None:
        for idx, t in enumerate(self._tables):
            if t.same_table(table):
                return self._tables.pop(idx)
        return None

    def replace(self, table: Table) -> bool:
        """Swap in a fresh copy for the entry matching ``table_id``/``table_name``."""
        for idx, t in enumerate(self._tables):
            if t.table_id == table.table_id and t.table_name == table.table_name:
                self._tables[idx] = table.copy()
                return True
        return False

    def owned_by(self, peer_id: str) -> list[Table]:
        return [t for t in self._tables if t.owner_peer_id == peer_id]

    def all(self) -> list[Table]:
        return [t.copy() for t in self._tables]

    def filter(
        self,
        *,
        table_name: str | None = None,
        table_id: str | None = None,
        owner_peer_id: str | None = None,
    ) -> list[Table]:
        """Copies of tables matching every filter that is not None."""
        checks = [
            (attr, value)
            for attr, value in (
                ("table_name", table_name),
                ("table_id", table_id),
                ("owner_peer_id", owner_peer_id),
            )
            if value is not None
        ]
        if not checks:
            return self.all()
        return [
            t.copy()
            for t in self._tables
            if all(getattr(t, attr) == value for attr, value in checks)
        ]

    def recompute_open(self, self_id: str | None) -> bool:
        self.open_tables = any(not t.is_full for t in self.owned_by(self_id or ""))
        return self.open_tables

    def get_stats(self) -> dict[str, Any]:
        return {
            "joined_tables": len(self._tables),
            "open_tables": self.open_tables,
        }
