"""
Retention policy enforcement for uploaded dumps.

Keeps the N most recently modified dumps under a database's base path and
deletes the rest. Only keys written by this agent (pgdump-*.dump) are ever
considered; unrelated objects sharing the prefix are left alone.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Iterator, List

from .naming import is_dump_key

logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most 1000 keys per request
DELETE_BATCH_SIZE = 1000


@dataclass(frozen=True)
class StoredObject:
    """One object observed in a storage listing."""

    key: str
    last_modified: datetime
    size: int = 0
    etag: str = ''


def select_expired(objects: Iterable[StoredObject], keep: int) -> List[str]:
    """
    Choose which dumps to delete.

    Args:
        objects: Listing of objects under the base path
        keep: Number of most recent dumps to retain (must be > 0)

    Returns:
        Keys to delete, most recent first

    Raises:
        ValueError: If keep is not positive
    """
    if keep <= 0:
        raise ValueError(f"keep must be positive, got {keep}")

    dumps = [obj for obj in objects if is_dump_key(obj.key)]

    # Most recent first; equal timestamps fall back to the key, whose
    # embedded timestamp sorts chronologically
    dumps.sort(key=lambda obj: (obj.last_modified, obj.key), reverse=True)

    return [obj.key for obj in dumps[keep:]]


def chunk_keys(keys: List[str], size: int = DELETE_BATCH_SIZE) -> Iterator[List[str]]:
    """Yield consecutive batches of at most size keys."""
    if size <= 0:
        raise ValueError(f"batch size must be positive, got {size}")

    for start in range(0, len(keys), size):
        yield keys[start:start + size]


def prune_history(storage, base: str, keep: int) -> int:
    """
    Delete dumps beyond the newest keep under base.

    Args:
        storage: Object with list_objects(prefix) and delete_objects(keys)
        base: Base path of the database's dumps
        keep: Number of dumps to retain

    Returns:
        Number of objects deleted

    Raises:
        StorageError: If listing or deletion fails
    """
    # Dumps in nested folders belong to some other base path
    objects = [
        obj for obj in storage.list_objects(base)
        if obj.key.startswith(base) and '/' not in obj.key[len(base):]
    ]
    expired = select_expired(objects, keep)

    if not expired:
        logger.info(f"[prune] {len(objects)} objects under {storage.uri(base)}, nothing to delete")
        return 0

    logger.info(f"[prune] deleting {len(expired)} old backups under {storage.uri(base)}")

    deleted = 0
    for batch in chunk_keys(expired):
        storage.delete_objects(batch)
        deleted += len(batch)

    return deleted
