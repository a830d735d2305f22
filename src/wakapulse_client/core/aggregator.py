"""Heartbeat aggregator.

Turns activity pulses into heartbeats: at most one per (project, file) and
interval unless the pulse is a save, each with the next persisted sequence
id, appended to the offline queue under a backpressure policy that never
drops write heartbeats.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from loguru import logger

from .errors import StorageFullError
from .events import ActivityKey, ActivityPulse, Heartbeat

if TYPE_CHECKING:
    from ..wal import OfflineQueue, SequenceCounter


@dataclass
class AggregatorConfig:
    """Configuration for the heartbeat aggregator."""

    heartbeat_interval_seconds: float = 120.0  # Minimum spacing of non-write heartbeats per key


class HeartbeatAggregator:
    """Coalesces pulses into heartbeats and stores them durably."""

    def __init__(self, config: Optional[AggregatorConfig], counter: "SequenceCounter", offline_queue: "OfflineQueue"):
        """Initialize the aggregator.

        Args:
            config: Aggregator configuration
            counter: Sequence counter owned by this aggregator
            offline_queue: Queue heartbeats are appended to
        """
        self.config = config or AggregatorConfig()
        self.counter = counter
        self.offline_queue = offline_queue
        self._last_heartbeat: Dict[ActivityKey, float] = {}

        # Statistics
        self._total_pulses = 0
        self._total_heartbeats = 0
        self._total_coalesced = 0
        self._total_dropped = 0
        self._total_forced = 0
        self._total_invalid = 0

    def on_pulse(self, pulse: ActivityPulse) -> Optional[Heartbeat]:
        """Handle one activity pulse.

        Args:
            pulse: Debounced activity pulse

        Returns:
            The stored heartbeat, or None if the pulse was invalid, coalesced or dropped
        """
        self._total_pulses += 1
        if not pulse.file_path.strip() or not pulse.project_id.strip() or pulse.timestamp <= 0:
            self._total_invalid += 1
            logger.warning(f"Ignoring pulse with no usable entity, project or timestamp: {pulse.file_path!r} at {pulse.timestamp}")
            return None

        key = pulse.key
        last = self._last_heartbeat.get(key)

        if not pulse.is_write and last is not None and 0 <= pulse.timestamp - last < self.config.heartbeat_interval_seconds:
            self._total_coalesced += 1
            return None

        duration = 0.0 if last is None else max(0.0, pulse.timestamp - last)
        heartbeat = Heartbeat(
            sequence_id=self.counter.next(),
            timestamp=pulse.timestamp,
            project_id=pulse.project_id,
            file_path=pulse.file_path,
            is_write=pulse.is_write,
            duration_since_last=duration,
            language=pulse.language,
            category=pulse.category,
            entity_type=pulse.entity_type,
        )
        self._last_heartbeat[key] = pulse.timestamp

        if not self._store(heartbeat):
            return None

        self._total_heartbeats += 1
        logger.debug(f"Created heartbeat {heartbeat.sequence_id} for {heartbeat.file_path} (write={heartbeat.is_write})")
        return heartbeat

    def _store(self, heartbeat: Heartbeat) -> bool:
        try:
            self.offline_queue.append(heartbeat)
            return True
        except StorageFullError as e:
            logger.warning(f"{e}; applying backpressure")
            self.offline_queue.evict_oldest_non_write(e.bytes_needed)

        try:
            self.offline_queue.append(heartbeat)
            return True
        except StorageFullError:
            if not heartbeat.is_write:
                self._total_dropped += 1
                logger.warning(f"Dropped non-write heartbeat {heartbeat.sequence_id}: offline queue is full")
                return False

        # Write heartbeats are never dropped
        self.offline_queue.append(heartbeat, force=True)
        self._total_forced += 1
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Get aggregator statistics."""
        return {
            "tracked_keys": len(self._last_heartbeat),
            "total_pulses": self._total_pulses,
            "total_heartbeats": self._total_heartbeats,
            "total_coalesced": self._total_coalesced,
            "total_dropped": self._total_dropped,
            "total_forced": self._total_forced,
            "total_invalid": self._total_invalid,
            "last_sequence_id": self.counter.last,
            "heartbeat_interval_seconds": self.config.heartbeat_interval_seconds,
        }
