"""Timestamp and signature text helpers."""

from __future__ import annotations

import base64
import binascii
import math
import re
from datetime import datetime, timezone

from . import base1024

_INTEGER = re.compile(r"[+-]?[0-9]+")


def time_to_timestamp_string(moment: datetime) -> str:
    """Unix seconds of ``moment`` as a decimal string."""
    return str(math.floor(moment.timestamp()))


def timestamp_string_to_time(value: str) -> datetime:
    """Parse a decimal Unix timestamp into an aware UTC datetime."""
    if not _INTEGER.fullmatch(value):
        raise ValueError(f"invalid timestamp: {value!r}")
    ts = int(value)
    if not -(2**63) <= ts < 2**63:
        raise ValueError(f"timestamp out of range: {value!r}")
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def decode_signature(text: str) -> bytes:
    """Decode a signature given as standard base64, or else as base1024."""
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return base1024.decode(text)