from __future__ import annotations

from collections.abc import Mapping

from .constants import JSONRPC_VERSION, K_DATA, K_FROM, K_JSONRPC, K_KIND, K_RESULT


def make_notification(sender: str, data: dict) -> dict:
    """Wrap a lobby message the way transports deliver it to listeners."""
    return {
        K_JSONRPC: JSONRPC_VERSION,
        K_RESULT: {
            K_FROM: sender,
            K_DATA: data,
        },
    }


def validate_notification(env) -> None:
    if not isinstance(env, Mapping):
        raise TypeError("notification must be a map")

    result = env.get(K_RESULT)
    if result is None:
        raise ValueError(f"missing notification key {K_RESULT!r}")
    if not isinstance(result, Mapping):
        raise TypeError("notification result must be a map")

    sender = result.get(K_FROM)
    if not isinstance(sender, str):
        raise TypeError("sender must be a string")
    if sender == "":
        raise ValueError("sender must not be empty")

    data = result.get(K_DATA)
    if not isinstance(data, Mapping):
        raise TypeError("notification data must be a map")

    kind = data.get(K_KIND)
    if not isinstance(kind, str):
        raise TypeError("message kind must be a string")
    if kind == "":
        raise ValueError("message kind must not be empty")


def unwrap_notification(env) -> tuple[str, Mapping]:
    """Validate and return ``(sender, data)``."""
    validate_notification(env)
    result = env[K_RESULT]
    return result[K_FROM], result[K_DATA]
