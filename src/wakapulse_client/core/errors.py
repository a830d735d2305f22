"""Error taxonomy for the WakaPulse client.

None of these are allowed to escape a background loop; they are raised at
component boundaries and contained by the pipeline.
"""

from __future__ import annotations

from typing import Optional


class WakaPulseError(Exception):
    """Base class for all WakaPulse client errors."""


class ConfigError(WakaPulseError):
    """Missing or invalid configuration, such as an absent API key."""


class QueueError(WakaPulseError):
    """Offline queue failure."""


class StorageFullError(QueueError):
    """The offline queue has reached its configured size cap."""

    def __init__(self, used_bytes: int, requested_bytes: int, capacity_bytes: int):
        self.used_bytes = used_bytes
        self.requested_bytes = requested_bytes
        self.capacity_bytes = capacity_bytes
        super().__init__(f"Offline queue full: {used_bytes} + {requested_bytes} bytes exceeds cap of {capacity_bytes} bytes")

    @property
    def bytes_needed(self) -> int:
        return self.used_bytes + self.requested_bytes - self.capacity_bytes


class CorruptRecordError(QueueError):
    """A stored record could not be decoded."""

    def __init__(self, sequence_id: int, reason: str):
        self.sequence_id = sequence_id
        super().__init__(f"Corrupt queue record {sequence_id}: {reason}")


class DeliveryError(WakaPulseError):
    """Delivery of a batch to the remote API failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, batch_id: Optional[str] = None):
        self.status_code = status_code
        self.batch_id = batch_id
        super().__init__(message)


class PermanentDeliveryError(DeliveryError):
    """The API refused the batch (4xx other than 429). Do not retry."""


class TransientDeliveryError(DeliveryError):
    """Network failure, timeout, 429 or 5xx. Retry with backoff."""
