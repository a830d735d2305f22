"""Core WakaPulse client components: event models, debouncing and aggregation."""

from .aggregator import AggregatorConfig, HeartbeatAggregator
from .debouncer import DebouncerConfig, EventDebouncer
from .errors import (
    ConfigError,
    CorruptRecordError,
    DeliveryError,
    PermanentDeliveryError,
    QueueError,
    StorageFullError,
    TransientDeliveryError,
    WakaPulseError,
)
from .events import ActivityEvent, ActivityPulse, Category, DeliveryBatch, DeliveryState, EntityType, EventKind, Heartbeat, QueueRecord
from .identity import Identity, IdentityResolver

__all__ = [
    # Event architecture
    "ActivityEvent",
    "ActivityPulse",
    "Heartbeat",
    "QueueRecord",
    "DeliveryBatch",
    "DeliveryState",
    "EventKind",
    "Category",
    "EntityType",
    # Processing
    "EventDebouncer",
    "DebouncerConfig",
    "HeartbeatAggregator",
    "AggregatorConfig",
    "Identity",
    "IdentityResolver",
    # Errors
    "WakaPulseError",
    "ConfigError",
    "QueueError",
    "StorageFullError",
    "CorruptRecordError",
    "DeliveryError",
    "PermanentDeliveryError",
    "TransientDeliveryError",
]
