"""Batching of queued heartbeats for efficient transmission."""

from .heartbeat_batcher import BatcherConfig, HeartbeatBatcher

__all__ = ["HeartbeatBatcher", "BatcherConfig"]
