"""
Per-run scan state: the image dedup ledger and the four category buckets.

A ``ScanSession`` is created for exactly one scan and handed to the
orchestrator.  Every mutation is serialized through one lock so parallel
region workers can share it; ``claim`` is the atomic check-and-mark that
guarantees each image id is resolved and classified at most once.
"""

from __future__ import annotations

import logging
import threading
from typing import Mapping

from scanner.models import CATEGORIES, ImageRecord

logger = logging.getLogger(__name__)


class ScanSession:
    """Image cache, category buckets and instance counter for one run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._seen: set[str] = set()
        self._buckets: dict[str, dict[str, ImageRecord]] = {c: {} for c in CATEGORIES}
        self._total_instances = 0

    # ------------------------------------------------------------------
    # Image cache
    # ------------------------------------------------------------------

    def seen(self, image_id: str) -> bool:
        with self._lock:
            return image_id in self._seen

    def mark_seen(self, image_id: str) -> None:
        with self._lock:
            self._seen.add(image_id)

    def claim(self, image_id: str) -> bool:
        """Mark *image_id* as seen; return True only for the first caller."""
        with self._lock:
            if image_id in self._seen:
                return False
            self._seen.add(image_id)
            return True

    # ------------------------------------------------------------------
    # Buckets and counters
    # ------------------------------------------------------------------

    def add_instances(self, count: int) -> None:
        with self._lock:
            self._total_instances += count

    def file(self, record: ImageRecord) -> None:
        """File a classified record into the bucket of its category."""
        with self._lock:
            for bucket in self._buckets.values():
                if record.image_id in bucket:
                    raise ValueError(f"{record.image_id} has already been classified")
            self._buckets[record.category][record.image_id] = record
        logger.debug("Filed %s as %s", record.image_id, record.category)

    @property
    def buckets(self) -> dict[str, Mapping[str, ImageRecord]]:
        """Snapshot of the buckets, keyed by category in report order."""
        with self._lock:
            return {c: dict(self._buckets[c]) for c in CATEGORIES}

    @property
    def total_instances(self) -> int:
        with self._lock:
            return self._total_instances

    @property
    def distinct_images(self) -> int:
        with self._lock:
            return len(self._seen)

    def records(self) -> list[ImageRecord]:
        """All records, category by category in report order."""
        with self._lock:
            return [r for c in CATEGORIES for r in self._buckets[c].values()]
