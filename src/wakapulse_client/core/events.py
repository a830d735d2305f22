"""Event models for the WakaPulse client architecture.

This module defines the records that flow through the client pipeline:
Editor Hooks → Inbound Queue → Debouncer → Aggregator → Offline Queue → Dispatcher → API
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class EventKind(str, Enum):
    """Kinds of raw editor activity."""

    OPENED = "opened"
    SAVED = "saved"
    FOCUS_CHANGED = "focus_changed"


class Category(str, Enum):
    """Activity categories understood by the time-tracking service."""

    CODING = "coding"
    DESIGNING = "designing"
    DEBUGGING = "debugging"
    BUILDING = "building"


class EntityType(str, Enum):
    """What a heartbeat entity refers to."""

    FILE = "file"
    APP = "app"


class DeliveryState(str, Enum):
    """Delivery states of a persisted heartbeat."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    FAILED = "failed"  # transient failure, still deliverable
    REJECTED = "rejected"  # permanent failure, never delivered

    @property
    def is_deliverable(self) -> bool:
        return self in (DeliveryState.PENDING, DeliveryState.FAILED)


ActivityKey = Tuple[str, str]


@dataclass(frozen=True)
class ActivityEvent:
    """Raw activity reported by the editor."""

    file_path: str
    event_kind: EventKind = EventKind.FOCUS_CHANGED
    timestamp: float = field(default_factory=time.time)
    project_id: str = ""
    language: Optional[str] = None
    category: Category = Category.CODING
    entity_type: EntityType = EntityType.FILE

    @property
    def key(self) -> ActivityKey:
        return (self.project_id, self.file_path)


@dataclass(frozen=True)
class ActivityPulse:
    """Debounced activity signal, one per key and window."""

    timestamp: float
    project_id: str
    file_path: str
    language: str
    is_write: bool
    event_kind: EventKind
    category: Category = Category.CODING
    entity_type: EntityType = EntityType.FILE

    @property
    def key(self) -> ActivityKey:
        return (self.project_id, self.file_path)


@dataclass(frozen=True)
class Heartbeat:
    """A timestamped record of activity on one entity."""

    sequence_id: int
    timestamp: float
    project_id: str
    file_path: str
    is_write: bool = False
    duration_since_last: float = 0.0
    language: str = ""
    category: Category = Category.CODING
    entity_type: EntityType = EntityType.FILE

    def to_dict(self) -> Dict[str, Any]:
        """Convert heartbeat to dictionary for local storage."""
        return {
            "sequence_id": self.sequence_id,
            "timestamp": self.timestamp,
            "project_id": self.project_id,
            "file_path": self.file_path,
            "is_write": self.is_write,
            "duration_since_last": self.duration_since_last,
            "language": self.language,
            "category": self.category.value,
            "entity_type": self.entity_type.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Heartbeat":
        """Rebuild a heartbeat from its stored dictionary.

        Raises:
            KeyError, ValueError, TypeError: if the data is not a valid heartbeat
        """
        return cls(
            sequence_id=int(data["sequence_id"]),
            timestamp=float(data["timestamp"]),
            project_id=str(data["project_id"]),
            file_path=str(data["file_path"]),
            is_write=bool(data["is_write"]),
            duration_since_last=float(data.get("duration_since_last", 0.0)),
            language=str(data.get("language", "")),
            category=Category(data.get("category", Category.CODING.value)),
            entity_type=EntityType(data.get("entity_type", EntityType.FILE.value)),
        )

    def to_api_dict(self, plugin: str = "") -> Dict[str, Any]:
        """Convert to the heartbeat object expected by the bulk API."""
        item = {
            "time": self.timestamp,
            "project": self.project_id,
            "entity": self.file_path,
            "type": self.entity_type.value,
            "category": self.category.value,
            "is_write": self.is_write,
            "language": self.language,
        }
        if plugin:
            item["plugin"] = plugin
        return item


@dataclass
class QueueRecord:
    """A heartbeat as held by the offline queue."""

    heartbeat: Heartbeat
    state: DeliveryState = DeliveryState.PENDING
    retry_count: int = 0
    batch_id: Optional[str] = None

    @property
    def sequence_id(self) -> int:
        return self.heartbeat.sequence_id


def batch_id_for_range(first_sequence_id: int, last_sequence_id: int) -> str:
    """Deterministic identifier of a contiguous sequence id range."""
    digest = hashlib.sha256(f"{first_sequence_id}:{last_sequence_id}".encode("utf-8"))
    return digest.hexdigest()[:32]


@dataclass
class DeliveryBatch:
    """A contiguous run of queue records sent in a single HTTP call."""

    records: List[QueueRecord] = field(default_factory=list)

    def __post_init__(self) -> None:
        for previous, current in zip(self.records, self.records[1:]):
            if current.sequence_id != previous.sequence_id + 1:
                raise ValueError(f"Batch records are not contiguous: {previous.sequence_id} -> {current.sequence_id}")

    @property
    def first_sequence_id(self) -> int:
        return self.records[0].sequence_id

    @property
    def last_sequence_id(self) -> int:
        return self.records[-1].sequence_id

    @property
    def batch_id(self) -> str:
        if not self.records:
            return batch_id_for_range(0, 0)
        return batch_id_for_range(self.first_sequence_id, self.last_sequence_id)

    def sequence_ids(self) -> List[int]:
        return [record.sequence_id for record in self.records]

    def size(self) -> int:
        """Return the number of heartbeats in this batch."""
        return len(self.records)

    def has_writes(self) -> bool:
        return any(record.heartbeat.is_write for record in self.records)

    def to_payload(self, plugin: str = "") -> List[Dict[str, Any]]:
        """Convert batch to the JSON array posted to the bulk endpoint."""
        return [record.heartbeat.to_api_dict(plugin) for record in self.records]
