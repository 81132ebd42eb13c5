"""
Clock and id providers.

Every timestamp and run id written to the ledger goes through this module so
tests can pin them (see runsitter.testing).
"""

import random
import time
from datetime import datetime, timezone
from typing import Callable, Optional

# Crockford's Base32 alphabet (excludes I, L, O, U)
CROCKFORD_BASE32 = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

_clock_override: Optional[Callable[[], datetime]] = None
_ulid_override: Optional[Callable[[], str]] = None


def utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    if _clock_override is not None:
        return _clock_override()
    return datetime.now(timezone.utc)


def set_clock_for_tests(fn: Callable[[], datetime]) -> None:
    global _clock_override
    _clock_override = fn


def reset_clock() -> None:
    global _clock_override
    _clock_override = None


def encode_base32(value: int, length: int) -> str:
    """Encode a non-negative int as fixed-width Crockford base32."""
    chars = []
    for _ in range(length):
        chars.append(CROCKFORD_BASE32[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


def generate_ulid() -> str:
    """
    Generate a ULID (Universally Unique Lexicographically Sortable Identifier).

    ULIDs are 26 characters, encoding:
    - 48 bits of timestamp (milliseconds since Unix epoch)
    - 80 bits of randomness
    """
    if _ulid_override is not None:
        return _ulid_override()

    timestamp_part = encode_base32(int(time.time() * 1000), 10)
    random_part = "".join(random.choice(CROCKFORD_BASE32) for _ in range(16))
    return timestamp_part + random_part


def set_ulid_factory_for_tests(fn: Callable[[], str]) -> None:
    global _ulid_override
    _ulid_override = fn


def reset_ulid_factory() -> None:
    global _ulid_override
    _ulid_override = None
