"""Persisted monotonic sequence counter for heartbeats."""

from __future__ import annotations

import threading

from loguru import logger

from .offline_queue import OfflineQueue


class SequenceCounter:
    """Hands out strictly increasing sequence ids that survive restarts.

    Each id is written to the queue database before it is returned, so an id
    is never reused even if the process dies before the heartbeat carrying it
    is stored.
    """

    def __init__(self, queue: OfflineQueue):
        self._queue = queue
        self._lock = threading.Lock()
        self._last = queue.load_last_sequence_id()
        logger.debug(f"Sequence counter resumed at {self._last}")

    @property
    def last(self) -> int:
        return self._last

    def next(self) -> int:
        with self._lock:
            value = self._last + 1
            self._queue.store_last_sequence_id(value)
            self._last = value
            return value
