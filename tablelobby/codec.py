"""CBOR framing for lobby notifications on the wire."""

from __future__ import annotations

from collections.abc import Mapping

import cbor2


def encode(env: Mapping) -> bytes:
    # Canonical form: the same notification always frames to the same bytes.
    return cbor2.dumps(env, canonical=True)


def decode(data: bytes) -> dict:
    env = cbor2.loads(data)
    if not isinstance(env, dict):
        raise ValueError(f"frame is not a CBOR map: {type(env).__name__}")
    return env
