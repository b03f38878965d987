"""
Per-blob in-flight guards.

Operations on the same blob id are serialized by claiming the id in a shared
set. The set is protected by a single mutex so the guard holds whether the
callers share one event loop or not.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Set

logger = logging.getLogger(__name__)


class InFlightGuard:
    """Set of blob ids with an operation in flight."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._in_flight: Set[str] = set()

    def try_acquire(self, blob_id: str) -> bool:
        """Claim blob_id. Returns False if it is already claimed."""
        with self._lock:
            if blob_id in self._in_flight:
                logger.debug(f"{self.name}: {blob_id} already in flight")
                return False
            self._in_flight.add(blob_id)
            return True

    def release(self, blob_id: str):
        with self._lock:
            self._in_flight.discard(blob_id)

    def is_in_flight(self, blob_id: str) -> bool:
        with self._lock:
            return blob_id in self._in_flight

    @property
    def in_flight(self) -> Set[str]:
        with self._lock:
            return set(self._in_flight)

    @contextmanager
    def hold(self, blob_id: str) -> Iterator[bool]:
        """
        Claim blob_id for the duration of the block.

        Yields True when the claim succeeded; the claim is released on exit,
        including on cancellation. Yields False without claiming otherwise.
        """
        acquired = self.try_acquire(blob_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(blob_id)
