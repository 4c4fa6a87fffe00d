from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, replace
from typing import Any

from .constants import (
    DEFAULT_ANNOUNCE_PERIOD_S,
    DEFAULT_BEACON_INTERVAL_MS,
    DEFAULT_JOIN_TIMEOUT_MS,
    DEFAULT_MAX_CAPTURED_TABLES,
    DEFAULT_MAX_CAPTURES_PER_PEER,
)


@dataclass(frozen=True)
class LobbyRuntimeConfig:
    config_path: str | None = None
    configdir: str | None = None
    identity_path: str | None = None
    dest_name: str = "tablelobby.peer"
    announce_on_start: bool = True
    announce_period_s: float = DEFAULT_ANNOUNCE_PERIOD_S
    capture_new_tables: bool = False
    max_captured_tables: int = DEFAULT_MAX_CAPTURED_TABLES
    max_captures_per_peer: int = DEFAULT_MAX_CAPTURES_PER_PEER
    beacon_interval_ms: int = DEFAULT_BEACON_INTERVAL_MS
    join_timeout_ms: int = DEFAULT_JOIN_TIMEOUT_MS
    consume_all_matching_slots: bool = True
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


# Settings that may change while the lobby is connected.
RUNTIME_FIELDS = frozenset(
    {
        "capture_new_tables",
        "max_captured_tables",
        "max_captures_per_peer",
        "beacon_interval_ms",
        "join_timeout_ms",
        "consume_all_matching_slots",
    }
)

_INT_FIELDS = (
    "max_captured_tables",
    "max_captures_per_peer",
    "beacon_interval_ms",
    "join_timeout_ms",
)

_FLOAT_FIELDS = ("announce_period_s",)

_BOOL_FIELDS = (
    "announce_on_start",
    "capture_new_tables",
    "consume_all_matching_slots",
    "log_console",
)

_OPTIONAL_STR_FIELDS = ("configdir", "identity_path", "log_file", "log_datefmt")


def load_toml(path: str) -> dict:
    with open(path, "rb") as f:
        return tomllib.load(f)


def apply_config_data(cfg: LobbyRuntimeConfig, data: dict[str, Any]) -> LobbyRuntimeConfig:
    """Overlay values from a parsed TOML document onto ``cfg``.

    Keys may sit at the top level or in a ``[lobby]`` table; the ``[logging]``
    table maps onto the ``log_*`` fields.
    """
    if not isinstance(data, dict):
        return cfg

    lobby = data.get("lobby")
    if isinstance(lobby, dict):
        data = {**data, **lobby}

    log_table = data.get("logging")
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for key in ("level", "rns_level", "console", "file", "format", "datefmt"):
            if key in log_table:
                mapped[f"log_{key}"] = log_table.get(key)
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # This identifies where the file was read from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for key in _INT_FIELDS:
        if key in updates:
            try:
                updates[key] = int(updates[key])
            except (TypeError, ValueError) as e:
                raise ValueError(f"{key} must be an integer: {updates[key]!r}") from e
            if updates[key] < 0:
                raise ValueError(f"{key} must not be negative")

    for key in _FLOAT_FIELDS:
        if key in updates:
            try:
                updates[key] = float(updates[key])
            except (TypeError, ValueError) as e:
                raise ValueError(f"{key} must be a number: {updates[key]!r}") from e
            if updates[key] < 0:
                raise ValueError(f"{key} must not be negative")

    for key in _BOOL_FIELDS:
        if key in updates:
            updates[key] = bool(updates[key])

    for key in _OPTIONAL_STR_FIELDS:
        if key in updates and updates[key] == "":
            updates[key] = None

    return replace(cfg, **updates) if updates else cfg


def load_config(path: str, base: LobbyRuntimeConfig | None = None) -> LobbyRuntimeConfig:
    cfg = base if base is not None else LobbyRuntimeConfig()
    cfg = replace(cfg, config_path=path)
    return apply_config_data(cfg, load_toml(path))
