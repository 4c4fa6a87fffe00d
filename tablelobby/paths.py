"""Where a lobby peer keeps its config and identity."""

from __future__ import annotations

import os
from pathlib import Path

HOME_ENV = "TABLELOBBY_HOME"


def lobby_home() -> Path:
    override = os.environ.get(HOME_ENV)
    return Path(expand_path(override)) if override else Path.home() / ".tablelobby"


def default_config_path() -> Path:
    return lobby_home() / "tablelobby.toml"


def default_identity_path() -> Path:
    return lobby_home() / "peer_identity"


def expand_path(p: str | os.PathLike[str]) -> str:
    return os.path.expanduser(os.path.expandvars(os.fspath(p)))


def ensure_private_parent(file_path: str | os.PathLike[str]) -> Path:
    """Create the directory that will hold ``file_path``.

    Only directories created here get mode 0700; existing ones are left alone.
    """
    parent = Path(expand_path(file_path)).parent
    if not parent.exists():
        parent.mkdir(mode=0o700, parents=True)
    return parent


def restrict_file(path: str | os.PathLike[str]) -> None:
    # Identities and logs are readable by the owner only. Not every
    # filesystem supports it.
    try:
        os.chmod(expand_path(path), 0o600)
    except OSError:
        pass
