"""
hashing.py - Content hashing for table comparison.

All hashing is deterministic: the same row produces the same digest in
every database copy.
"""

import hashlib
from typing import Any

from handoff_sync.utils.msgpack_codec import pack_dict


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def row_hash(row: dict[str, Any], columns: list[str] | None = None) -> str:
    """
    SHA-256 of the row's canonical MessagePack encoding.

    Args:
        row: Column -> value mapping
        columns: Columns that take part in the comparison
    """
    return sha256_hex(pack_dict(row, columns))
