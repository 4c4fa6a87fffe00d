"""Serverless table lobby and join negotiation for peer-to-peer games."""

from __future__ import annotations

__version__ = "0.1.0"

from .config import LobbyRuntimeConfig
from .errors import JoinRejectedError, JoinTimeoutError, LobbyError, NotConnectedError
from .service import LobbyService
from .tables import Table

__all__ = [
    "JoinRejectedError",
    "JoinTimeoutError",
    "LobbyError",
    "LobbyRuntimeConfig",
    "LobbyService",
    "NotConnectedError",
    "Table",
    "__version__",
]
