"""Heartbeat batcher for building delivery batches from the offline queue.

A batch is the run of oldest deliverable records that is contiguous in
sequence id, capped at the configured size. Records that already went out
in an earlier attempt are re-sent in exactly the same range so the batch
keeps its identifier and the API can deduplicate a retried delivery.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from loguru import logger

from ..core.events import DeliveryBatch, QueueRecord
from ..wal import OfflineQueue


@dataclass
class BatcherConfig:
    """Configuration for the heartbeat batcher."""

    max_batch_size: int = 50  # Maximum heartbeats per HTTP call


class HeartbeatBatcher:
    """Selects the next delivery batch."""

    def __init__(self, config: Optional[BatcherConfig], offline_queue: OfflineQueue):
        """Initialize the batcher.

        Args:
            config: Batcher configuration
            offline_queue: Queue to read deliverable records from
        """
        self.config = config or BatcherConfig()
        self.offline_queue = offline_queue

        # Statistics
        self._total_batches_created = 0
        self._total_heartbeats_batched = 0
        self._total_batches_resumed = 0

    def next_batch(self) -> Optional[DeliveryBatch]:
        """Build the next batch, or None if nothing is deliverable."""
        records = self.offline_queue.peek_batch(self.config.max_batch_size)
        if not records:
            return None

        selected = self._select(records)
        batch = DeliveryBatch(records=selected)

        self._total_batches_created += 1
        self._total_heartbeats_batched += batch.size()
        logger.debug(f"Built batch {batch.batch_id} with {batch.size()} heartbeats ({batch.first_sequence_id}-{batch.last_sequence_id})")
        return batch

    def _select(self, records: List[QueueRecord]) -> List[QueueRecord]:
        head = records[0]
        previous_batch = head.batch_id
        if previous_batch is not None:
            self._total_batches_resumed += 1

        selected = [head]
        for record in records[1:]:
            if record.sequence_id != selected[-1].sequence_id + 1:
                break
            if record.batch_id != previous_batch:
                break
            selected.append(record)
        return selected

    def get_stats(self) -> Dict[str, Any]:
        """Get batcher statistics."""
        return {
            "total_batches_created": self._total_batches_created,
            "total_heartbeats_batched": self._total_heartbeats_batched,
            "total_batches_resumed": self._total_batches_resumed,
            "config": {
                "max_batch_size": self.config.max_batch_size,
            },
        }
