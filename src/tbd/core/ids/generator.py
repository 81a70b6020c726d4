"""
Identifier generation and normalization.

Records carry two kinds of id:
- Internal id: ``is-<ulid>`` (26 lowercase Crockford base32 chars), stored
  in record files and used everywhere inside the data.
- Short id: a few base36 chars (``a7k2``), shown to people as ``bd-a7k2``
  and mapped to the internal id by the id mapping file.
"""

import os
import re
import secrets
import string
import threading
import time

INTERNAL_ID_PREFIX = "is"
ULID_LENGTH = 26
INTERNAL_ID_PATTERN = rf"^{INTERNAL_ID_PREFIX}-[0-9a-z]{{{ULID_LENGTH}}}$"

_INTERNAL_ID_RE = re.compile(INTERNAL_ID_PATTERN)
_ULID_RE = re.compile(rf"^[0-9a-z]{{{ULID_LENGTH}}}$")

# Crockford base32, lowercased (no i, l, o, u)
_CROCKFORD = "0123456789abcdefghjkmnpqrstvwxyz"

SHORT_ID_CHARS = string.digits + string.ascii_lowercase
SHORT_ID_LENGTH = 4
SHORT_ID_MAX_LENGTH = 8
_SHORT_ID_RE = re.compile(r"^[0-9a-z]{1,16}$")


_RANDOM_BITS = 80
_RANDOM_MAX = (1 << _RANDOM_BITS) - 1

_ulid_lock = threading.Lock()
_last_ts_ms = -1
_last_rand = 0


def new_ulid() -> str:
    """
    Generate a ULID: 48-bit millisecond timestamp plus 80 random bits.

    ULIDs from one process are strictly increasing: within the same
    millisecond (or if the clock steps back) the previous random part is
    incremented instead of drawing a new one.

    Returns:
        26-character lowercase Crockford base32 string; lexical order follows
        creation order.
    """
    global _last_ts_ms, _last_rand

    with _ulid_lock:
        ts_ms = int(time.time() * 1000)
        if ts_ms <= _last_ts_ms:
            ts_ms = _last_ts_ms
            rand = _last_rand + 1
            if rand > _RANDOM_MAX:
                # Random part overflowed; borrow the next millisecond
                ts_ms += 1
                rand = int.from_bytes(os.urandom(10), "big") >> 1
        else:
            rand = int.from_bytes(os.urandom(10), "big")
        _last_ts_ms, _last_rand = ts_ms, rand

    value = (ts_ms << _RANDOM_BITS) | rand
    chars = []
    for _ in range(ULID_LENGTH):
        value, index = divmod(value, 32)
        chars.append(_CROCKFORD[index])
    return "".join(reversed(chars))


def generate_internal_id() -> str:
    """Generate a new internal record id (``is-<ulid>``)."""
    return f"{INTERNAL_ID_PREFIX}-{new_ulid()}"


def generate_short_id(length: int = SHORT_ID_LENGTH) -> str:
    """Generate a random base36 short id of the given length."""
    return "".join(secrets.choice(SHORT_ID_CHARS) for _ in range(length))


def is_internal_id(value: str) -> bool:
    """Whether ``value`` is a full internal id (``is-<ulid>``)."""
    return bool(_INTERNAL_ID_RE.match(value))


def is_short_id(value: str) -> bool:
    """Whether ``value`` looks like a bare short id (``a7k2``)."""
    return bool(_SHORT_ID_RE.match(value)) and not _ULID_RE.match(value)


def normalize_internal_id(value: str) -> str | None:
    """
    Normalize user input that names an internal id.

    Accepts ``is-<ulid>`` and a bare 26-char ulid, in any case.

    Returns:
        The canonical internal id, or None if ``value`` is not an internal id
    """
    candidate = value.strip().lower()
    if _INTERNAL_ID_RE.match(candidate):
        return candidate
    if _ULID_RE.match(candidate):
        return f"{INTERNAL_ID_PREFIX}-{candidate}"
    return None


def extract_short_id(value: str, prefix: str) -> str:
    """
    Strip a display prefix from user input.

    ``bd-a7k2`` and ``a7k2`` both yield ``a7k2``. Any ``<letters>-`` prefix
    is accepted so ids copied from another project still resolve.
    """
    candidate = value.strip().lower()
    if candidate.startswith(f"{prefix}-"):
        return candidate[len(prefix) + 1 :]
    head, sep, tail = candidate.partition("-")
    if sep and head.isalpha():
        return tail
    return candidate


def format_display_id(short_id: str, prefix: str) -> str:
    """Format a short id for display (``bd-a7k2``)."""
    return f"{prefix}-{short_id}"
