"""Background delivery of queued heartbeats."""

from .dispatcher import Dispatcher, DispatcherConfig
from .scheduling import BackoffPolicy, CancellationToken, ScheduledTask

__all__ = ["Dispatcher", "DispatcherConfig", "BackoffPolicy", "CancellationToken", "ScheduledTask"]
