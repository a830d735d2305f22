"""Dispatcher that drains the offline queue to the remote API.

Single background task and sole mutator of delivery state. Each cycle takes
the next contiguous batch, claims it, posts it and records the outcome:

- 2xx: delivered
- 4xx except 429: rejected for good and surfaced to the user
- 429, 5xx, network errors: retried with backoff, then kept for a later cycle
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from loguru import logger

from ..batcher import HeartbeatBatcher
from ..core.errors import PermanentDeliveryError
from ..core.events import DeliveryBatch
from ..sender import HTTPSender, find_invalid_records
from ..wal import OfflineQueue
from .scheduling import BackoffPolicy, CancellationToken, ScheduledTask

UserNotifier = Callable[[str], None]


@dataclass
class DispatcherConfig:
    """Configuration for the dispatcher."""

    poll_interval_seconds: float = 5.0  # Wait when idle or after a failed cycle
    max_retries: int = 3  # In-cycle retries of a transiently failing batch
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    retry_warning_threshold: int = 10  # Log an error once records have failed this many cycles
    max_user_warnings: int = 3  # User-visible notices for rejected batches before going quiet
    shutdown_grace_seconds: float = 5.0  # Time allowed for an in-flight call on stop


class Dispatcher:
    """Delivers queued heartbeats with retry, backoff and duplicate suppression."""

    def __init__(
        self,
        config: Optional[DispatcherConfig],
        offline_queue: OfflineQueue,
        batcher: HeartbeatBatcher,
        sender: HTTPSender,
        notifier: Optional[UserNotifier] = None,
        token: Optional[CancellationToken] = None,
    ):
        """Initialize the dispatcher.

        Args:
            config: Dispatcher configuration
            offline_queue: Durable queue to drain
            batcher: Builds batches from the queue
            sender: Performs the HTTP call
            notifier: Shows an error to the user, e.g. an editor notification
            token: Cancellation token shared with the background task
        """
        self.config = config or DispatcherConfig()
        self.offline_queue = offline_queue
        self.batcher = batcher
        self.sender = sender
        self.notifier = notifier
        self.token = token or CancellationToken()

        self._enabled = True
        self._disabled_reason: Optional[str] = None
        self._task: Optional[ScheduledTask] = None
        self._cycle_lock = threading.Lock()

        # Statistics
        self._total_cycles = 0
        self._total_delivered = 0
        self._total_rejected = 0
        self._total_kept = 0
        self._total_attempts = 0
        self._user_warnings = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        if not self._enabled:
            logger.info("Dispatcher enabled")
        self._enabled = True
        self._disabled_reason = None

    def disable(self, reason: str) -> None:
        if self._enabled:
            logger.warning(f"Dispatcher disabled: {reason}")
        self._enabled = False
        self._disabled_reason = reason

    def start(self) -> None:
        """Start the background delivery loop."""
        if self._task is not None and self._task.is_running:
            logger.warning("Dispatcher is already running")
            return

        if self.token.is_cancelled:
            self.token = CancellationToken()

        self._task = ScheduledTask("WakaPulse-Dispatcher", self.run_cycle, token=self.token, error_delay=self.config.poll_interval_seconds)
        self._task.start()
        logger.info("Started dispatcher")

    def stop(self, grace_seconds: Optional[float] = None) -> bool:
        """Stop the loop, giving an in-flight call a bounded grace period.

        Records of an abandoned call stay in flight on disk and are recovered
        on the next start.

        Returns:
            True if the loop exited within the grace period
        """
        grace = self.config.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        if self._task is None:
            self.token.cancel()
            return True

        stopped = self._task.stop(grace)
        logger.info(f"Stopped dispatcher. Stats - Delivered: {self._total_delivered}, Rejected: {self._total_rejected}, Kept for retry: {self._total_kept}")
        return stopped

    def run_cycle(self) -> float:
        """Deliver at most one batch.

        Returns:
            Seconds to wait before the next cycle
        """
        with self._cycle_lock:
            return self._run_cycle()

    def _run_cycle(self) -> float:
        if not self._enabled:
            return self.config.poll_interval_seconds

        batch = self._next_sendable_batch()
        if batch is None:
            return self.config.poll_interval_seconds

        self._total_cycles += 1
        ids = batch.sequence_ids()
        self.offline_queue.mark_in_flight(ids, batch.batch_id)

        try:
            delivered = self._deliver(batch)
        except Exception:
            self.offline_queue.release(ids)
            raise

        if delivered:
            return 0.0
        return self.config.poll_interval_seconds

    def _next_sendable_batch(self) -> Optional[DeliveryBatch]:
        """Next batch with unsendable heartbeats rejected individually.

        Rejected records leave the deliverable pool, so the rebuilt batch is
        cut at the gap they leave and the valid neighbours still go out.
        """
        batch = self.batcher.next_batch()
        while batch is not None:
            invalid = find_invalid_records(batch)
            if not invalid:
                return batch

            invalid_ids = [record.sequence_id for record in invalid]
            self.offline_queue.mark_rejected(invalid_ids)
            self._total_rejected += len(invalid_ids)
            logger.error(f"Rejected {len(invalid_ids)} invalid heartbeats {invalid_ids} from batch {batch.batch_id}")
            batch = self.batcher.next_batch()
        return None

    def drain(self, max_batches: int = 100) -> int:
        """Synchronously deliver batches until the queue is empty or a batch fails.

        Returns:
            Number of batches delivered
        """
        delivered = 0
        for _ in range(max_batches):
            if self.run_cycle() != 0.0:
                break
            delivered += 1
        return delivered

    def _deliver(self, batch: DeliveryBatch) -> bool:
        ids = batch.sequence_ids()
        last_error = None

        for attempt in range(self.config.max_retries + 1):
            self._total_attempts += 1
            result = self.sender.send_batch(batch)

            if result.success:
                self.offline_queue.mark_delivered(ids)
                self._total_delivered += batch.size()
                return True

            last_error = result.error
            if isinstance(result.error, PermanentDeliveryError):
                self.offline_queue.mark_rejected(ids)
                self._total_rejected += batch.size()
                self._surface_rejection(batch, result.error)
                return False

            if attempt >= self.config.max_retries:
                break

            delay = self.config.backoff.delay_for(attempt)
            logger.warning(f"Send attempt {attempt + 1} for batch {batch.batch_id} failed: {result.error}. Retrying in {delay:.1f}s...")
            if self.token.wait(delay):
                logger.info(f"Dispatcher cancelled while backing off; batch {batch.batch_id} stays queued")
                self.offline_queue.release(ids)
                return False

        self.offline_queue.mark_failed(ids)
        self._total_kept += batch.size()
        self._check_retry_ceiling(batch)
        logger.warning(f"Batch {batch.batch_id} kept for a later attempt after {self.config.max_retries + 1} tries: {last_error}")
        return False

    def _surface_rejection(self, batch: DeliveryBatch, error: PermanentDeliveryError) -> None:
        message = f"WakaPulse: heartbeats were rejected by the server ({error}). Check your API key and settings."
        logger.error(f"Batch {batch.batch_id} rejected permanently: {error}")

        if self.notifier is None or self._user_warnings >= self.config.max_user_warnings:
            return

        self._user_warnings += 1
        try:
            self.notifier(message)
        except Exception as e:
            logger.error(f"User notifier failed: {e}")

    def _check_retry_ceiling(self, batch: DeliveryBatch) -> None:
        attempts = max(record.retry_count for record in batch.records) + 1
        if attempts >= self.config.retry_warning_threshold:
            logger.error(f"Batch {batch.batch_id} has failed {attempts} delivery cycles; keeping {batch.size()} heartbeats queued")

    def get_stats(self) -> Dict[str, Any]:
        """Get dispatcher statistics."""
        return {
            "enabled": self._enabled,
            "disabled_reason": self._disabled_reason,
            "running": self._task is not None and self._task.is_running,
            "total_cycles": self._total_cycles,
            "total_attempts": self._total_attempts,
            "total_delivered": self._total_delivered,
            "total_rejected": self._total_rejected,
            "total_kept": self._total_kept,
            "user_warnings": self._user_warnings,
        }
