from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .constants import (
    M_JOIN_REQUEST,
    M_JOIN_TABLE,
    M_LEAVE_TABLE,
    M_NEW_TABLE,
    M_TABLE_MSG,
    WILDCARD,
)
from .messages import (
    Notification,
    TableMessage,
    TableNotification,
    build_table_message,
    decode_notification,
)
from .outbox import Outbox
from .tables import Table

if TYPE_CHECKING:
    from .service import LobbyService


class MessageRouter:
    """
    Handles inbound lobby notifications.

    This class is responsible for:
    - Decoding and validating transport notifications
    - Dispatching by message kind (newtable, jointablerequest, jointable, ...)
    - Updating the table registry and announcement cache
    - Resolving pending join requests
    - Queueing replies and application events
    """

    def __init__(self, lobby: LobbyService) -> None:
        self.lobby = lobby
        self.log = logging.getLogger("tablelobby.router")

    def route_notification(self, env, outbox: Outbox) -> Notification | None:
        """
        Main entry point for an inbound notification.

        This method should be called with the state lock held. Returns the
        decoded message, or None if the notification was ignored.
        """
        stats = self.lobby.stats_manager
        stats.inc("notifications_in")

        try:
            msg = decode_notification(env)
        except (TypeError, ValueError) as e:
            stats.inc("notifications_ignored")
            self.log.debug("Ignoring notification err=%s", e)
            return None

        if msg is None:
            stats.inc("notifications_ignored")
            self.log.debug("Ignoring unsupported or invalid lobby message")
            return None

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("RX kind=%s from=%s", msg.kind, msg.sender[:12])

        # Dispatch by message kind
        if isinstance(msg, TableMessage):
            self._handle_table_message(msg, outbox)
        elif msg.kind == M_NEW_TABLE:
            self._handle_new_table(msg, outbox)
        elif msg.kind == M_JOIN_REQUEST:
            self._handle_join_request(msg, outbox)
        elif msg.kind == M_JOIN_TABLE:
            self._handle_join_table(msg, outbox)
        elif msg.kind == M_LEAVE_TABLE:
            self._handle_leave_table(msg, outbox)
        return msg

    def _handle_new_table(self, msg: TableNotification, outbox: Outbox) -> None:
        if not self.lobby.config.capture_new_tables:
            return

        if self.lobby.cache.capture(msg.sender, msg.table):
            self.lobby.stats_manager.inc("tables_captured")
            outbox.emit(M_NEW_TABLE, msg)
        else:
            self.lobby.stats_manager.inc("captures_rejected")

    def _handle_join_request(self, msg: TableNotification, outbox: Outbox) -> None:
        registry = self.lobby.registry
        if not registry.open_tables:
            return

        self_id = self.lobby.peer_id
        for table in registry.owned_by(self_id or ""):
            if (
                table.table_id != msg.table.table_id
                or table.table_name != msg.table.table_name
            ):
                continue
            self._admit(table, msg, outbox)

        registry.recompute_open(self_id)

    def _admit(self, table: Table, msg: TableNotification, outbox: Outbox) -> int:
        """Fill the slots of an owned table the requester qualifies for."""
        requester = msg.sender
        matching = [
            idx
            for idx, slot in enumerate(table.required_slots)
            if slot == requester or slot == WILDCARD
        ]
        if not self.lobby.config.consume_all_matching_slots:
            matching = matching[:1]

        # Highest index first so the remaining indices stay valid.
        for idx in reversed(matching):
            del table.required_slots[idx]
            table.joined_peers.append(requester)
            outbox.send(
                build_table_message(M_JOIN_TABLE, table),
                self.lobby.other_members(table),
            )
            outbox.emit(M_JOIN_REQUEST, msg)
            self.lobby.stats_manager.inc("members_admitted")
            self.log.info(
                "Admitted %s to %s open_slots=%s",
                requester[:12],
                table,
                len(table.required_slots),
            )

        if not matching:
            self.log.debug("No slot for %s at %s", requester[:12], table)
        return len(matching)

    def _handle_join_table(self, msg: TableNotification, outbox: Outbox) -> None:
        registry = self.lobby.registry

        if registry.replace(msg.table):
            # Another peer joined a table we are already part of.
            registry.recompute_open(self.lobby.peer_id)
            outbox.emit(M_JOIN_TABLE, msg)
            return

        req = self.lobby.negotiator.find_pending(
            msg.sender, msg.table.table_id, msg.table.table_name
        )
        if req is None:
            return

        registry.add(msg.table.copy())
        outbox.emit(M_JOIN_TABLE, msg)
        self.lobby.negotiator.accept(req, msg.table, outbox)

    def _handle_table_message(self, msg: TableMessage, outbox: Outbox) -> None:
        self.lobby.stats_manager.inc("table_msgs_in")
        outbox.emit(M_TABLE_MSG, msg)

    def _handle_leave_table(self, msg: TableNotification, outbox: Outbox) -> None:
        table = self.lobby.registry.find(msg.table.table_id, msg.table.table_name)
        if table is None or msg.sender not in table.joined_peers:
            return

        table.joined_peers.remove(msg.sender)
        self.lobby.stats_manager.inc("leaves_in")
        self.log.info("Peer %s left %s", msg.sender[:12], table)
        outbox.emit(M_LEAVE_TABLE, msg)
