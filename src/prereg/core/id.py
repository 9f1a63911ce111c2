"""Identifier generation.

Subscription ids combine a caller-supplied logical name with a millisecond
timestamp and a per-millisecond counter, so rapid re-subscription under the
same name never collides. Referral codes are short uppercase tokens.
"""

import secrets
import time
import uuid

REFERRAL_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
REFERRAL_CODE_LENGTH = 8

# State for monotonic suffixes
_last_timestamp = 0
_counter = 0


def unique(name: str, timestamp: int | None = None) -> str:
    """Derive a process-unique id from a logical name.

    Args:
        name: Logical subscription name, e.g. ``"registration-stats"``
        timestamp: Optional millisecond timestamp (for testing)

    Returns:
        Id like ``"registration-stats-1760000000000-1"``
    """
    global _last_timestamp, _counter

    now = timestamp if timestamp is not None else int(time.time() * 1000)
    if now != _last_timestamp:
        _last_timestamp = now
        _counter = 0
    _counter += 1
    return f"{name}-{now}-{_counter}"


def referral_code(length: int = REFERRAL_CODE_LENGTH) -> str:
    """Generate an uppercase alphanumeric referral code."""
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(length))


def row_id() -> str:
    """Generate a row primary key (UUID4 string)."""
    return str(uuid.uuid4())


def timestamp(id_str: str) -> int:
    """Extract the millisecond timestamp embedded by ``unique``."""
    parts = id_str.rsplit("-", 2)
    if len(parts) != 3 or not parts[1].isdigit():
        raise ValueError(f"Invalid ID format: {id_str}")
    return int(parts[1])


class Identifier:
    """Namespace class for id generation functions."""

    unique = staticmethod(unique)
    referral_code = staticmethod(referral_code)
    row_id = staticmethod(row_id)
    timestamp = staticmethod(timestamp)
