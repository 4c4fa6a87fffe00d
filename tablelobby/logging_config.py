"""Logging setup for a lobby peer process."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from .config import LobbyRuntimeConfig
from .paths import ensure_private_parent, expand_path, restrict_file

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _level(value: Any, default: int) -> int:
    if isinstance(value, int):
        return value
    text = str(value or "").strip().upper()
    if not text:
        return default
    if text.isdigit():
        return int(text)
    return logging.getLevelNamesMapping().get(text, default)


def _log_file(cfg: LobbyRuntimeConfig, override_file: str | None) -> Path | None:
    # An explicit empty override turns file logging off.
    raw = override_file if override_file is not None else cfg.log_file
    raw = str(raw or "").strip()
    return Path(expand_path(raw)) if raw else None


def configure_logging(
    cfg: LobbyRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Send lobby, Reticulum and ``warnings`` output to the configured sinks.

    Existing root handlers are replaced, so this may be called again with a
    changed config. With neither console nor file logging the process is
    silent.
    """
    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    path = _log_file(cfg, override_file)
    if path is not None:
        ensure_private_parent(path)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
        restrict_file(path)

    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=_level(override_level or cfg.log_level, logging.INFO),
        format=str(cfg.log_format).strip() or DEFAULT_FORMAT,
        datefmt=cfg.log_datefmt or None,
        handlers=handlers,
        force=True,
    )
    logging.getLogger("RNS").setLevel(_level(cfg.log_rns_level, logging.WARNING))
    logging.captureWarnings(True)
