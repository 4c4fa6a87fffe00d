from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Outbox:
    """Side effects queued while the state lock is held.

    Sends, event emissions and deferred calls are flushed in order by
    ``LobbyService._flush`` once the lock has been released.
    """

    items: list[tuple[str, tuple[Any, ...]]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)

    def broadcast(self, payload: dict) -> None:
        self.items.append(("broadcast", (payload,)))

    def send(self, payload: dict, recipients: Iterable[str]) -> None:
        self.items.append(("send", (payload, list(recipients))))

    def emit(self, event: str, payload: Any) -> None:
        self.items.append(("emit", (event, payload)))

    def call(self, fn: Callable[..., Any], *args: Any) -> None:
        self.items.append(("call", (fn, *args)))
