"""Durable offline storage for heartbeats pending delivery."""

from .offline_queue import OfflineQueue, OfflineQueueConfig
from .sequence import SequenceCounter

__all__ = ["OfflineQueue", "OfflineQueueConfig", "SequenceCounter"]
