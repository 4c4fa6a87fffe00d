"""Lobby message variants, their decoding and their construction."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from .constants import (
    K_KIND,
    K_MESSAGE,
    K_OWNER,
    K_TABLE_ID,
    K_TABLE_NAME,
    M_TABLE_MSG,
    TABLE_KINDS,
)
from .envelope import unwrap_notification
from .tables import Table


@dataclass(frozen=True)
class TableNotification:
    """``newtable``, ``jointablerequest``, ``jointable`` or ``leavetable``."""

    kind: str
    sender: str
    table: Table
    raw: Mapping = field(repr=False, compare=False)


@dataclass(frozen=True)
class TableMessage:
    """``tablemsg``: an application message routed to table members."""

    sender: str
    table_id: str
    table_name: str
    owner_peer_id: str | None
    message: Any
    raw: Mapping = field(repr=False, compare=False)

    kind = M_TABLE_MSG


Notification = Union[TableNotification, TableMessage]


def decode_notification(env) -> Notification | None:
    """Decode a transport notification into a lobby message variant.

    Raises TypeError/ValueError when the envelope is malformed. Returns None for
    well-formed notifications this protocol does not handle, including table
    kinds whose embedded table fails the validity check.
    """
    sender, data = unwrap_notification(env)
    kind = data[K_KIND]

    if kind in TABLE_KINDS:
        table = Table.from_wire(data)
        if table is None:
            return None
        return TableNotification(kind=kind, sender=sender, table=table, raw=env)

    if kind == M_TABLE_MSG:
        table_id = data.get(K_TABLE_ID)
        table_name = data.get(K_TABLE_NAME)
        if not isinstance(table_id, str) or not isinstance(table_name, str):
            return None
        owner = data.get(K_OWNER)
        return TableMessage(
            sender=sender,
            table_id=table_id,
            table_name=table_name,
            owner_peer_id=owner if isinstance(owner, str) else None,
            message=data.get(K_MESSAGE),
            raw=env,
        )

    return None


def build_table_message(kind: str, table: Table) -> dict:
    msg: dict[str, object] = {K_KIND: kind}
    msg.update(table.to_wire())
    return msg


def build_chat_message(table: Table, message: Any) -> dict:
    return {
        K_KIND: M_TABLE_MSG,
        K_TABLE_ID: table.table_id,
        K_TABLE_NAME: table.table_name,
        K_OWNER: table.owner_peer_id,
        K_MESSAGE: message,
    }
