from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace

import RNS

from .config import LobbyRuntimeConfig, apply_config_data, load_toml
from .constants import (
    E_JOIN_TIMEOUT,
    M_JOIN_REQUEST,
    M_JOIN_TABLE,
    M_LEAVE_TABLE,
    M_NEW_TABLE,
    M_TABLE_MSG,
)
from .logging_config import configure_logging
from .paths import (
    default_config_path,
    default_identity_path,
    ensure_private_parent,
    restrict_file,
)
from .reticulum import ReticulumTransport
from .service import LobbyService


def _write_default_config(config_path: str, identity_path: str) -> None:
    ensure_private_parent(config_path)

    content = f"""# tablelobby configuration (TOML)
#
# This file was created on first run.
# Edit it, then start tablelobby again.

[lobby]

# Optional: Reticulum configuration directory.
# If left unset, Reticulum will choose its default (usually ~/.reticulum).
configdir = ""

# Where this peer stores its Reticulum Identity. The peer id other lobby
# members see is derived from it.
identity_path = {identity_path!r}

# Destination name shared by all lobby peers. Broadcasts use "<dest_name>.broadcast".
dest_name = "tablelobby.peer"

# Announce this peer's destination right after startup so others can reach it.
announce_on_start = true

# Re-announce every N seconds so peers that start later can reach us (0 disables).
announce_period_s = 60.0

# Table discovery.
#
# capture_new_tables: keep tables announced by other peers.
# max_captured_tables: size of the discovery cache (oldest entries are dropped).
# max_captures_per_peer: how many tables a single peer may occupy in the cache.
capture_new_tables = true
max_captured_tables = 99
max_captures_per_peer = 5

# Owned tables are re-announced at this interval (milliseconds) until full.
beacon_interval_ms = 5000

# How long to wait for a table owner to accept a join request (milliseconds).
join_timeout_ms = 20000

# Let one join request take every seat the requester qualifies for.
consume_all_matching_slots = true

[logging]

# Log level for tablelobby itself.
level = "INFO"

# Log level for Reticulum/RNS Python logging (if used by your install).
rns_level = "WARNING"

# Log to stderr.
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _ensure_first_run_files(config_path: str, identity_path: str) -> bool:
    created_any = False

    if not os.path.exists(config_path):
        _write_default_config(config_path, identity_path)
        created_any = True

    if not os.path.exists(identity_path):
        ensure_private_parent(identity_path)
        RNS.Identity().to_file(identity_path)
        restrict_file(identity_path)
        created_any = True

    return created_any


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="tablelobby", description="Run a peer-to-peer table lobby peer"
    )

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")
    p.add_argument(
        "--identity",
        default=str(default_identity_path()),
        help="Path to the peer identity file (created on first run)",
    )
    p.add_argument(
        "--dest-name", default=None, help="Destination app name (default: tablelobby.peer)"
    )
    p.add_argument(
        "--no-announce", action="store_true", help="Do not announce this peer on start"
    )
    p.add_argument(
        "--announce-period",
        type=float,
        default=None,
        help="Re-announce interval in seconds (0 disables)",
    )

    capture = p.add_mutually_exclusive_group()
    capture.add_argument(
        "--capture", dest="capture", action="store_true", default=None,
        help="Capture tables announced by other peers",
    )
    capture.add_argument(
        "--no-capture", dest="capture", action="store_false",
        help="Ignore tables announced by other peers",
    )
    p.add_argument(
        "--max-captured-tables", type=int, default=None, help="Discovery cache size"
    )
    p.add_argument(
        "--max-captures-per-peer",
        type=int,
        default=None,
        help="Cached tables allowed per announcing peer",
    )
    p.add_argument(
        "--beacon-interval",
        type=int,
        default=None,
        help="Owned table re-announce interval in milliseconds",
    )
    p.add_argument(
        "--join-timeout",
        type=int,
        default=None,
        help="Join reply timeout in milliseconds",
    )

    p.add_argument("--create", metavar="NAME", default=None, help="Create a table on start")
    p.add_argument(
        "--seats", type=int, default=1, help="Open seats for --create (default: 1)"
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def _log_events(lobby: LobbyService) -> None:
    log = logging.getLogger("tablelobby.cli")

    def on_new_table(msg) -> None:
        log.info("Table announced %s by %s", msg.table, msg.sender[:12])

    def on_join_request(msg) -> None:
        log.info("Peer %s joined our table %s", msg.sender[:12], msg.table.table_name)

    def on_join_table(msg) -> None:
        log.info("Table update %s members=%s", msg.table, len(msg.table.joined_peers))

    def on_table_msg(msg) -> None:
        log.info("[%s] %s: %r", msg.table_name, msg.sender[:12], msg.message)

    def on_leave_table(msg) -> None:
        log.info("Peer %s left %s", msg.sender[:12], msg.table.table_name)

    def on_join_timeout(table) -> None:
        log.warning("Join timed out %s", table)

    lobby.add_listener(M_NEW_TABLE, on_new_table)
    lobby.add_listener(M_JOIN_REQUEST, on_join_request)
    lobby.add_listener(M_JOIN_TABLE, on_join_table)
    lobby.add_listener(M_TABLE_MSG, on_table_msg)
    lobby.add_listener(M_LEAVE_TABLE, on_leave_table)
    lobby.add_listener(E_JOIN_TIMEOUT, on_join_timeout)


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    identity_path = str(args.identity)

    if _ensure_first_run_files(config_path, identity_path):
        print(
            "Created default tablelobby files. Edit the configuration before starting:\n"
            f"- Config:   {config_path}\n"
            f"- Identity: {identity_path}\n"
            "\nThen re-run tablelobby.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = LobbyRuntimeConfig(identity_path=identity_path, config_path=config_path)
    cfg = apply_config_data(cfg, load_toml(config_path))

    if args.configdir is not None:
        cfg = replace(cfg, configdir=args.configdir)
    if args.dest_name is not None:
        cfg = replace(cfg, dest_name=args.dest_name)
    if args.no_announce:
        cfg = replace(cfg, announce_on_start=False)
    if args.announce_period is not None:
        cfg = replace(cfg, announce_period_s=float(args.announce_period))
    if args.capture is not None:
        cfg = replace(cfg, capture_new_tables=bool(args.capture))
    if args.max_captured_tables is not None:
        cfg = replace(cfg, max_captured_tables=int(args.max_captured_tables))
    if args.max_captures_per_peer is not None:
        cfg = replace(cfg, max_captures_per_peer=int(args.max_captures_per_peer))
    if args.beacon_interval is not None:
        cfg = replace(cfg, beacon_interval_ms=int(args.beacon_interval))
    if args.join_timeout is not None:
        cfg = replace(cfg, join_timeout_ms=int(args.join_timeout))
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    lobby = LobbyService(cfg, ReticulumTransport(cfg))
    _log_events(lobby)

    if lobby.start() is None:
        raise SystemExit(1)

    if args.create is not None:
        lobby.create_table(args.create, max(0, int(args.seats)))

    try:
        lobby.run_forever()
    finally:
        logging.getLogger("tablelobby.cli").info("%s", lobby.stats_manager.format_stats())


if __name__ == "__main__":
    main()
