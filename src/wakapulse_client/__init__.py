"""WakaPulse Client - editor activity heartbeats with offline queueing and reliable delivery."""

from .client import WakaPulseClient
from .config import get_config_manager
from .core.events import ActivityEvent, Category, EntityType, EventKind

__version__ = "1.0.0"

__all__ = ["WakaPulseClient", "ActivityEvent", "EventKind", "Category", "EntityType", "get_config_manager"]
