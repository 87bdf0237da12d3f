"""Sortable identifiers for runs and execution contexts.

Both kinds are ``<kind>-<ulid>``: a 48-bit millisecond timestamp followed by
80 random bits, rendered as 26 Crockford Base32 characters. Ids of one kind
therefore sort lexically in creation order, which the CLI relies on to find
the latest run log.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Final

CROCKFORD_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1

_RANDOM_BITS: Final[int] = 80
_EPOCH: Final[datetime] = datetime(1970, 1, 1, tzinfo=UTC)
_CHAR_VALUES: Final[dict[str, int]] = {char: value for value, char in enumerate(CROCKFORD_ALPHABET)}

Entropy = Callable[[int], bytes]


class IdKind(StrEnum):
    CONTEXT = "ctx"
    RUN = "run"


def new_id(kind: IdKind, *, now_ms: int | None = None, entropy: Entropy | None = None) -> str:
    """Return a fresh ``<kind>-<ulid>`` id.

    ``now_ms`` and ``entropy`` exist so tests can pin the output.
    """
    timestamp = time.time_ns() // 1_000_000 if now_ms is None else now_ms
    if not 0 <= timestamp <= MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp out of range: {timestamp}")
    noise = (entropy or secrets.token_bytes)(_RANDOM_BITS // 8)
    if len(noise) != _RANDOM_BITS // 8:
        raise ValueError(f"entropy source must return {_RANDOM_BITS // 8} bytes")

    value = (timestamp << _RANDOM_BITS) | int.from_bytes(noise, "big")
    chars = []
    for _ in range(ULID_LENGTH):
        chars.append(CROCKFORD_ALPHABET[value & 0x1F])
        value >>= 5
    return f"{IdKind(kind).value}-{''.join(reversed(chars))}"


def generate_context_id(*, now_ms: int | None = None, entropy: Entropy | None = None) -> str:
    return new_id(IdKind.CONTEXT, now_ms=now_ms, entropy=entropy)


def generate_run_id(*, now_ms: int | None = None, entropy: Entropy | None = None) -> str:
    return new_id(IdKind.RUN, now_ms=now_ms, entropy=entropy)


def parse_id(value: str, kind: IdKind) -> datetime:
    """Validate ``value`` as an id of ``kind`` and return its creation time.

    Lowercase input is accepted. Raises ``ValueError`` naming the problem.
    """
    kind = IdKind(kind)
    lead = f"{kind.value}-"
    if not isinstance(value, str) or not value.startswith(lead):
        raise ValueError(f"expected a {kind.value!r} id, got {value!r}")
    body = value[len(lead) :]
    if len(body) != ULID_LENGTH:
        raise ValueError(f"id body must be {ULID_LENGTH} characters, got {len(body)}")

    decoded = 0
    for position, char in enumerate(body.upper()):
        digit = _CHAR_VALUES.get(char)
        if digit is None:
            raise ValueError(f"invalid character {char!r} at position {position}")
        decoded = (decoded << 5) | digit
    # 26 characters carry 130 bits; only the low 128 are a ULID.
    if decoded >> 128:
        raise ValueError("id body overflows 128 bits")

    timestamp_ms = decoded >> _RANDOM_BITS
    return _EPOCH + timedelta(milliseconds=timestamp_ms)


def is_run_id(value: str) -> bool:
    try:
        parse_id(value, IdKind.RUN)
    except ValueError:
        return False
    return True


__all__ = [
    "CROCKFORD_ALPHABET",
    "MAX_TIMESTAMP_MS",
    "ULID_LENGTH",
    "Entropy",
    "IdKind",
    "generate_context_id",
    "generate_run_id",
    "is_run_id",
    "new_id",
    "parse_id",
]
