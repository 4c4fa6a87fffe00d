from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

Listener = Callable[[Any], None]


class EventDispatcher:
    """Delivers lobby events to application listeners.

    Listeners are called on whichever thread produced the event (a transport
    callback or a timer), never while the lobby state lock is held.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("tablelobby.events")
        self._listeners: dict[str, list[Listener]] = {}
        self._lock = threading.Lock()

    def add_listener(self, event: str, callback: Listener) -> None:
        with self._lock:
            self._listeners.setdefault(event, []).append(callback)

    def remove_listener(self, event: str, callback: Listener) -> bool:
        with self._lock:
            listeners = self._listeners.get(event)
            if not listeners or callback not in listeners:
                return False
            listeners.remove(callback)
            if not listeners:
                self._listeners.pop(event, None)
            return True

    def emit(self, event: str, payload: Any) -> int:
        """Call every listener for ``event``. Returns how many were called."""
        with self._lock:
            listeners = list(self._listeners.get(event, ()))

        for cb in listeners:
            try:
                cb(payload)
            except Exception:
                self.log.exception("Listener failed event=%s", event)
        return len(listeners)
