"""In-memory media blobs addressed by ``blob:<id>`` references.

Finished videos are held here instead of on disk so the UI can dereference the
result through ``/api/media/{id}``. The store is bounded; the oldest blob is
evicted once ``max_items`` is exceeded.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass

from genstudio.core import ids
from genstudio.core.logging import log

BLOB_PREFIX = "blob:"


@dataclass(frozen=True)
class MediaBlob:
    data: bytes
    mime_type: str


class MediaStore:
    def __init__(self, max_items: int = 8):
        if max_items < 1:
            raise ValueError(f"max_items must be positive, got {max_items}")
        self.max_items = max_items
        self._blobs: OrderedDict[str, MediaBlob] = OrderedDict()
        self._lock = threading.Lock()

    def put(self, data: bytes, mime_type: str) -> str:
        """Stores bytes and returns their ``blob:`` reference."""
        key = ids.blob_id()
        with self._lock:
            self._blobs[key] = MediaBlob(data=data, mime_type=mime_type)
            while len(self._blobs) > self.max_items:
                evicted, _ = self._blobs.popitem(last=False)
                log.info(f"media_blob_evicted id={evicted}")
        log.info(f"media_blob_stored id={key} mime={mime_type} size_kb={len(data) // 1024}")
        return f"{BLOB_PREFIX}{key}"

    def get(self, reference: str) -> MediaBlob | None:
        """Looks up a blob by reference (``blob:<id>``) or bare id."""
        with self._lock:
            return self._blobs.get(_strip(reference))

    def release(self, reference: str | None) -> bool:
        """Drops a blob. Data URIs and unknown references are ignored.

        Returns:
            True if a blob was removed
        """
        if not reference or not reference.startswith(BLOB_PREFIX):
            return False
        with self._lock:
            removed = self._blobs.pop(_strip(reference), None) is not None
        if removed:
            log.info(f"media_blob_released ref={reference}")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)


def _strip(reference: str) -> str:
    if reference.startswith(BLOB_PREFIX):
        return reference[len(BLOB_PREFIX):]
    return reference
