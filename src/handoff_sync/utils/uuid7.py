"""
uuid7.py - UUID v7 generation.

Time-ordered identifiers built with the standard library: 48 bits of
millisecond timestamp followed by random bits, with the version and
variant bits patched in.
"""

import os
import time


def generate_uuid_v7(t_ms: int | None = None) -> bytes:
    """
    Generate a UUID v7 as raw 16 bytes.

    Structure:
    - 48 bits: Timestamp (ms)
    - 4 bits: Version (7)
    - 12 bits: rand_a
    - 2 bits: Variant (10)
    - 62 bits: rand_b
    """
    if t_ms is None:
        t_ms = int(time.time() * 1000)

    t_bytes = (t_ms & 0xFFFFFFFFFFFF).to_bytes(6, byteorder="big")
    r = bytearray(os.urandom(10))

    # Byte 6 of the result carries the version nibble
    r[0] = (r[0] & 0x0F) | 0x70
    # Byte 8 of the result carries the variant bits
    r[2] = (r[2] & 0x3F) | 0x80

    return t_bytes + bytes(r)
