"""Outbound join attempts and their resolution.

A join request is created by ``LobbyService.join_table`` and ends in exactly
one of two ways: the owner sends a matching ``jointable`` update (accepted), or
the reply timeout expires (timed out). There is no rejection message and no
way to cancel an attempt early.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .constants import E_JOIN_TIMEOUT, M_JOIN_REQUEST
from .errors import JoinRejectedError, JoinTimeoutError
from .messages import build_table_message
from .outbox import Outbox
from .tables import Table, is_valid_table

if TYPE_CHECKING:
    from .service import LobbyService


class JoinState(Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    TIMED_OUT = "timed_out"


@dataclass
class JoinRequest:
    table: Table
    future: Future = field(default_factory=Future)
    state: JoinState = JoinState.PENDING
    timer: threading.Timer | None = None

    def matches(self, owner_peer_id: str, table_id: str, table_name: str | None = None) -> bool:
        if self.table.owner_peer_id != owner_peer_id or self.table.table_id != table_id:
            return False
        return table_name is None or self.table.table_name == table_name

    def release_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


def _set_result(future: Future, result: Any) -> None:
    if not future.done():
        future.set_result(result)


def _set_exception(future: Future, exc: BaseException) -> None:
    if not future.done():
        future.set_exception(exc)


class JoinNegotiator:
    """Tracks pending join requests. Callers hold the state lock."""

    def __init__(self, lobby: LobbyService) -> None:
        self.lobby = lobby
        self.log = logging.getLogger("tablelobby.negotiation")
        self._pending: list[JoinRequest] = []

    def __len__(self) -> int:
        return len(self._pending)

    def find_pending(
        self, owner_peer_id: str, table_id: str, table_name: str | None = None
    ) -> JoinRequest | None:
        for req in self._pending:
            if req.matches(owner_peer_id, table_id, table_name):
                return req
        return None

    def begin(self, table: Table, timeout_ms: float, outbox: Outbox) -> Future:
        """Validate a join attempt and, if acceptable, send the request to the owner."""
        future: Future = Future()

        if not is_valid_table(table):
            self._reject(future, "invalid table", None, outbox)
            return future

        self_id = self.lobby.peer_id or ""
        if not table.slot_available_for(self_id):
            self._reject(future, "no open slot for this peer", table, outbox)
            return future

        if self.find_pending(table.owner_peer_id, table.table_id) is not None:
            self._reject(future, "join request already pending", table, outbox)
            return future

        req = JoinRequest(table=table.copy(), future=future)
        self._pending.append(req)

        outbox.send(build_table_message(M_JOIN_REQUEST, req.table), [req.table.owner_peer_id])
        self.lobby.stats_manager.inc("join_requests_out")

        timeout_s = max(0.0, float(timeout_ms) / 1000.0)
        req.timer = threading.Timer(timeout_s, self._on_timeout, args=(req,))
        req.timer.name = f"tablelobby-join-{req.table.table_id}"
        req.timer.daemon = True
        req.timer.start()

        self.log.info("Join requested %s timeout_ms=%s", req.table, timeout_ms)
        return future

    def accept(self, req: JoinRequest, table: Table, outbox: Outbox) -> None:
        if req.state is not JoinState.PENDING:
            return
        req.state = JoinState.ACCEPTED
        req.release_timer()
        self._remove(req)
        self.lobby.stats_manager.inc("joins_accepted")
        self.log.info("Join accepted %s", table)
        outbox.call(_set_result, req.future, table.copy())

    def cancel_all(self, outbox: Outbox) -> None:
        for req in list(self._pending):
            req.release_timer()
            outbox.call(req.future.cancel)
        self._pending.clear()

    def _reject(self, future: Future, reason: str, table: Table | None, outbox: Outbox) -> None:
        self.lobby.stats_manager.inc("joins_rejected")
        self.log.debug("Join rejected reason=%s table=%s", reason, table)
        exc = JoinRejectedError(reason, table.copy() if table is not None else None)
        outbox.call(_set_exception, future, exc)

    def _remove(self, req: JoinRequest) -> None:
        self._pending = [r for r in self._pending if r is not req]

    def _on_timeout(self, req: JoinRequest) -> None:
        lobby = self.lobby
        outbox = Outbox()
        with lobby._state_lock:
            if req.state is not JoinState.PENDING:
                return
            req.state = JoinState.TIMED_OUT
            req.timer = None
            self._remove(req)
            lobby.stats_manager.inc("join_timeouts")
            self.log.info("Join timed out %s", req.table)
            outbox.emit(E_JOIN_TIMEOUT, req.table.copy())
            outbox.call(
                _set_exception,
                req.future,
                JoinTimeoutError("join request timed out", req.table.copy()),
            )
        lobby._flush(outbox)
