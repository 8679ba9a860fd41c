"""Random correlation values linking a queued computation to its completion."""

from __future__ import annotations

import secrets


def new_computation_handle() -> int:
    """Eight random bytes read as a little-endian u64.

    Handles are not checked against in-flight ones; a collision needs two
    equal 64-bit draws.
    """

    return int.from_bytes(secrets.token_bytes(8), "little")


def new_nonce() -> int:
    """A random 128-bit nonce for one encryption."""

    return int.from_bytes(secrets.token_bytes(16), "little")


__all__ = ["new_computation_handle", "new_nonce"]
