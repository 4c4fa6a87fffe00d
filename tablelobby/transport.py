from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

MessageCallback = Callable[[dict], None]


class Transport:
    """The peer-to-peer capability the lobby runs on.

    Implementations deliver every inbound notification to the registered
    callback as ``{"jsonrpc": "2.0", "result": {"from": peer_id, "data": payload}}``
    and never hand a peer its own broadcasts.
    """

    def __init__(self) -> None:
        self._message_callback: MessageCallback | None = None

    @property
    def peer_id(self) -> str | None:
        raise NotImplementedError

    def connect(self, endpoint: Any = None) -> str:
        """Join the network. Blocks until ready and returns the local peer id."""
        raise NotImplementedError

    def broadcast(self, payload: dict) -> None:
        raise NotImplementedError

    def send(self, payload: dict, recipients: Iterable[str]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def set_message_callback(self, callback: MessageCallback | None) -> None:
        self._message_callback = callback

    def _deliver(self, notification: dict) -> None:
        cb = self._message_callback
        if cb is not None:
            cb(notification)
