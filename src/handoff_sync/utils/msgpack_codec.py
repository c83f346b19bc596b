"""
msgpack_codec.py - Canonical MessagePack serialization.

Row contents are serialized with sorted keys so that identical rows
produce identical bytes in both database copies. That is what makes
per-row hashes comparable across copies.
"""

from typing import Any

import msgpack

from handoff_sync.errors import ValidationError


def pack_dict(data: dict[str, Any], columns: list[str] | None = None) -> bytes:
    """
    Serialize a dictionary to canonical MessagePack.

    Args:
        data: Row as a column -> value mapping
        columns: Restrict to these columns; absent ones encode as None

    Returns:
        MessagePack bytes with keys in sorted order

    Raises:
        ValidationError: If data cannot be serialized
    """
    if not isinstance(data, dict):
        raise ValidationError(
            f"Expected dict, got {type(data).__name__}",
            field="data",
            value=data,
        )

    keys = sorted(columns) if columns is not None else sorted(data.keys())
    try:
        return msgpack.packb({k: data.get(k) for k in keys}, use_bin_type=True)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"Cannot serialize dict to MessagePack: {e}",
            field="data",
            value=str(data)[:100],
        ) from e

