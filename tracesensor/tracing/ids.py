"""Trace and span identifiers.

Identifiers are unsigned 64-bit integers drawn from the operating system
CSPRNG, so separate processes of the same fleet never share a seed and
concurrent callers need no locking.
"""

from __future__ import annotations

import re
import secrets

MAX_ID = (1 << 64) - 1
_HEX_ID = re.compile(r"[0-9a-fA-F]{1,16}")


class IDGenerator:
    """Produces non-zero 64-bit identifiers."""

    def new_id(self) -> int:
        while True:
            value = secrets.randbits(64)
            if value:
                return value


_default_generator = IDGenerator()


def generate_id() -> int:
    """Return a fresh identifier from the default generator."""
    return _default_generator.new_id()


def format_id(value: int) -> str:
    """Encode an identifier as lowercase hex without padding."""
    return format(value, "x")


def parse_id(value: str) -> int:
    """Decode a hex identifier.

    Raises:
        ValueError: if ``value`` is empty, not hex, zero or wider than 64 bits.
    """
    text = value.strip()
    if not _HEX_ID.fullmatch(text):
        raise ValueError(f"invalid identifier: {value!r}")
    parsed = int(text, 16)
    if parsed == 0:
        raise ValueError("identifier must be non-zero")
    return parsed
