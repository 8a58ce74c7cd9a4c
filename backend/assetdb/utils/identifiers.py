from __future__ import annotations

import os
import secrets
import time
import uuid
from datetime import datetime


def generate_uuid7() -> str:
    """
    Generate a UUIDv7 string (time-ordered).

    UUIDv7 layout per draft:
    - 48-bit Unix timestamp in milliseconds
    - 4-bit version (0b0111)
    - 74-bit randomness
    """
    ts_ms = int(time.time() * 1000)
    ts_bytes = ts_ms.to_bytes(6, "big", signed=False)
    rand_bytes = os.urandom(10)
    raw = bytearray(ts_bytes + rand_bytes)
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


def format_rma_number(day: datetime, sequence: int) -> str:
    """Display number for a case, e.g. RMA-20250114-0003."""
    return f"RMA-{day.strftime('%Y%m%d')}-{sequence:04d}"


def next_sequence_from(last_number: str | None) -> int:
    """
    Return the next daily sequence given the last issued number for that day.

    Malformed numbers restart the counter at 1.
    """
    if not last_number:
        return 1
    parts = last_number.split("-")
    if len(parts) < 3:
        return 1
    try:
        return int(parts[2]) + 1
    except ValueError:
        return 1


def generate_user_id(prefix: str = "USR") -> str:
    """Short user id such as ``USR-1F2A9C3D``; safe as a zero-argument column default."""
    block = secrets.token_hex(4).upper()
    return f"{prefix}-{block}" if prefix else block
