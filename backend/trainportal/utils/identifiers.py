from __future__ import annotations

import os
import time
import uuid


def generate_uuid7() -> str:
    """
    Time-ordered UUIDv7 string used as primary key default.

    48-bit millisecond timestamp, 4-bit version, 2-bit variant, rest random.
    Sorting ids therefore roughly follows insertion order, which keeps the
    notification inbox and the email log cheap to page through.
    """
    ts_ms = int(time.time() * 1000)
    raw = bytearray(ts_ms.to_bytes(6, "big", signed=False) + os.urandom(10))
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))
