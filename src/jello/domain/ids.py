"""Instance identifiers.

Every row is keyed by a ULID: a 48-bit millisecond timestamp followed by 80
random bits, written as 26 Crockford Base32 characters. Identifiers are unique
without coordination between processes and sort by creation time.
"""

from __future__ import annotations

import secrets
import time
from typing import Final

ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ID_LENGTH: Final[int] = 26
RANDOM_BITS: Final[int] = 80
MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1

_VALUE_BITS: Final[int] = 128
_DIGITS: Final[dict[str, int]] = {char: index for index, char in enumerate(ALPHABET)}


def generate_instance_id(
    *,
    timestamp_ms: int | None = None,
    entropy: int | None = None,
) -> str:
    """Return a fresh identifier; both parts can be pinned for deterministic tests."""
    stamp = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not 0 <= stamp <= MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp_ms must be within 0..{MAX_TIMESTAMP_MS}, got {stamp}")
    noise = secrets.randbits(RANDOM_BITS) if entropy is None else entropy
    if not 0 <= noise < 1 << RANDOM_BITS:
        raise ValueError(f"entropy must fit in {RANDOM_BITS} bits")
    return _encode((stamp << RANDOM_BITS) | noise)


def decode_instance_id(instance_id: str) -> int:
    """Return the 128-bit value of ``instance_id`` or raise ``ValueError``."""
    if not isinstance(instance_id, str):
        raise ValueError(f"instance id must be a string, got {type(instance_id).__name__}")
    if len(instance_id) != ID_LENGTH:
        raise ValueError(f"instance id must be {ID_LENGTH} characters, got {len(instance_id)}")
    value = 0
    for position, char in enumerate(instance_id.upper()):
        digit = _DIGITS.get(char)
        if digit is None:
            raise ValueError(f"instance id has invalid character {char!r} at {position}")
        value = value * 32 + digit
    if value >> _VALUE_BITS:
        raise ValueError("instance id exceeds 128 bits")
    return value


def is_instance_id(value: object) -> bool:
    if not isinstance(value, str):
        return False
    try:
        decode_instance_id(value)
    except ValueError:
        return False
    return True


def created_at_ms(instance_id: str) -> int:
    """Creation time embedded in ``instance_id``, in epoch milliseconds."""
    return decode_instance_id(instance_id) >> RANDOM_BITS


def _encode(value: int) -> str:
    chars: list[str] = []
    for _ in range(ID_LENGTH):
        value, digit = divmod(value, 32)
        chars.append(ALPHABET[digit])
    return "".join(reversed(chars))


__all__ = [
    "ALPHABET",
    "ID_LENGTH",
    "MAX_TIMESTAMP_MS",
    "RANDOM_BITS",
    "created_at_ms",
    "decode_instance_id",
    "generate_instance_id",
    "is_instance_id",
]
