"""Identifier helpers for topics."""

from __future__ import annotations

import itertools
import secrets
import time

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_SEQUENCE = itertools.count()


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    chars: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        chars.append(_ALPHABET[remainder])
    return "".join(reversed(chars))


def new_topic_id(length: int = 24) -> str:
    """Time-ordered, collision-resistant topic id with a ``t`` prefix."""
    stamp = _to_base36(int(time.time() * 1000))
    sequence = _to_base36(next(_SEQUENCE) % (36**4)).rjust(4, "0")
    body = f"{stamp}{sequence}{secrets.token_hex(length)}"
    return f"t{body[: max(length - 1, 8)]}"
