"""
identity.py - Locally generated identifiers.

A machine id names one client installation in lock file names. It is
persisted so that a restarted client recognizes (and re-adopts) its own
lock instead of waiting for it to go stale.
"""

import logging
import os
import re
import uuid
from pathlib import Path

from handoff_sync.errors import ValidationError
from handoff_sync.utils.uuid7 import generate_uuid_v7

logger = logging.getLogger(__name__)

_MACHINE_ID_RE = re.compile(r"^[A-Za-z0-9]+$")


def generate_machine_id() -> str:
    """Return a fresh machine id: 32 lowercase hex characters."""
    return generate_uuid_v7().hex()


def validate_machine_id(machine_id: str) -> str:
    """Machine ids are embedded in file names, so only [A-Za-z0-9] is allowed."""
    if not machine_id or not _MACHINE_ID_RE.match(machine_id):
        raise ValidationError(
            "Machine id must be non-empty and alphanumeric",
            field="machine_id",
            value=machine_id,
        )
    return machine_id


def load_or_create_machine_id(path: str | os.PathLike) -> str:
    """
    Read the machine id stored at path, creating it on first use.

    An unreadable or corrupted file is replaced with a new id.
    """
    id_path = Path(path)
    try:
        existing = id_path.read_text(encoding="utf-8").strip()
        return validate_machine_id(existing)
    except FileNotFoundError:
        pass
    except (OSError, ValidationError) as e:
        logger.warning(f"Replacing unreadable machine id at {id_path}: {e}")

    machine_id = generate_machine_id()
    id_path.parent.mkdir(parents=True, exist_ok=True)
    id_path.write_text(machine_id, encoding="utf-8")
    return machine_id


def generate_sync_id() -> str:
    """Return a row identity string, stable across database copies."""
    return str(uuid.UUID(bytes=generate_uuid_v7()))
