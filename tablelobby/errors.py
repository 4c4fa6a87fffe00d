from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .tables import Table


class LobbyError(Exception):
    """Base class for table lobby errors."""


class NotConnectedError(LobbyError):
    def __init__(self, message: str = "peer-to-peer network connection not established") -> None:
        super().__init__(message)


class JoinRejectedError(LobbyError):
    """A join attempt failed before or during negotiation."""

    def __init__(self, reason: str, table: Table | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.table = table


class JoinTimeoutError(JoinRejectedError):
    """The table owner did not accept the join request in time."""
