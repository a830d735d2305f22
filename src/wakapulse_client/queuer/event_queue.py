"""Inbound channel for raw editor activity.

Editor hooks push ActivityEvents here from whatever thread the host calls
them on; the pipeline drains the channel into the debouncer. The channel is
bounded: when it is full a save displaces the oldest non-save event, any
other event is dropped.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from ..core.events import ActivityEvent, EventKind


@dataclass
class EventQueueConfig:
    """Configuration for the inbound event queue."""

    max_size: int = 1000  # Maximum events held in memory
    drain_batch_size: int = 200  # How many events to drain at once
    timeout_seconds: float = 0.1  # Timeout for blocking dequeue


class EventQueue:
    """Thread-safe bounded in-memory queue of activity events."""

    def __init__(self, config: Optional[EventQueueConfig] = None):
        """Initialize the event queue.

        Args:
            config: Queue configuration
        """
        self.config = config or EventQueueConfig()
        self._queue: deque[ActivityEvent] = deque()
        self._lock = threading.RLock()
        self._not_empty = threading.Condition(self._lock)

        # Statistics
        self._total_enqueued = 0
        self._total_dequeued = 0
        self._total_dropped = 0
        self._running = True

    def enqueue(self, event: ActivityEvent) -> bool:
        """Add an event to the queue.

        Args:
            event: Event to enqueue

        Returns:
            True if enqueued, False if it was dropped
        """
        with self._lock:
            if not self._running:
                logger.warning("Event queue is shut down, dropping event")
                return False

            if len(self._queue) >= self.config.max_size and not self._make_room_for(event):
                self._total_dropped += 1
                logger.warning(f"Event queue full, dropping {event.event_kind.value} event for {event.file_path}")
                return False

            self._queue.append(event)
            self._total_enqueued += 1
            self._not_empty.notify()
            return True

    def dequeue(self, timeout: Optional[float] = None) -> Optional[ActivityEvent]:
        """Remove and return the oldest event, waiting up to timeout.

        Returns:
            Event if available, None on timeout or shutdown
        """
        timeout = timeout if timeout is not None else self.config.timeout_seconds

        with self._lock:
            if not self._queue and self._running:
                self._not_empty.wait(timeout)

            if self._queue:
                self._total_dequeued += 1
                return self._queue.popleft()

        return None

    def dequeue_batch(self, max_size: Optional[int] = None) -> list[ActivityEvent]:
        """Remove and return up to max_size events in arrival order."""
        max_size = max_size or self.config.drain_batch_size
        events = []

        with self._lock:
            while len(events) < max_size and self._queue:
                events.append(self._queue.popleft())
            self._total_dequeued += len(events)

        return events

    def size(self) -> int:
        """Return the current queue size."""
        with self._lock:
            return len(self._queue)

    def is_empty(self) -> bool:
        with self._lock:
            return not self._queue

    def shutdown(self) -> list[ActivityEvent]:
        """Stop accepting events and return any that remain."""
        with self._lock:
            self._running = False
            remaining = list(self._queue)
            self._queue.clear()
            self._not_empty.notify_all()

        logger.info(f"Event queue shutdown. Stats - Enqueued: {self._total_enqueued}, Dequeued: {self._total_dequeued}, Dropped: {self._total_dropped}, Remaining: {len(remaining)}")
        return remaining

    def reopen(self) -> None:
        """Accept events again after a shutdown."""
        with self._lock:
            if not self._running:
                self._running = True
                logger.debug("Event queue reopened")

    def get_stats(self) -> dict:
        """Get queue statistics."""
        with self._lock:
            return {
                "current_size": len(self._queue),
                "max_size": self.config.max_size,
                "total_enqueued": self._total_enqueued,
                "total_dequeued": self._total_dequeued,
                "total_dropped": self._total_dropped,
                "running": self._running,
                "utilization": len(self._queue) / self.config.max_size,
            }

    def _make_room_for(self, event: ActivityEvent) -> bool:
        if event.event_kind != EventKind.SAVED:
            return False

        for index, queued in enumerate(self._queue):
            if queued.event_kind != EventKind.SAVED:
                del self._queue[index]
                self._total_dropped += 1
                return True
        return False


class EventProducer:
    """Handle given to editor hooks for pushing events."""

    def __init__(self, queue: EventQueue, component_name: str = "unknown"):
        """Initialize producer.

        Args:
            queue: Event queue to send events to
            component_name: Name of the hook producing events
        """
        self.queue = queue
        self.component_name = component_name

    def emit(self, event: ActivityEvent) -> bool:
        """Emit an event to the queue.

        Returns:
            True if successful, False if the queue rejected the event
        """
        success = self.queue.enqueue(event)
        if not success:
            logger.error(f"{self.component_name}: Failed to emit {event.event_kind.value} event")
        return success
