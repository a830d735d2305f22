"""Shared fixtures for the WakaPulse client tests."""

from typing import Callable, List

import pytest

from wakapulse_client.core.events import Category, EntityType, Heartbeat
from wakapulse_client.dispatcher import CancellationToken
from wakapulse_client.wal import OfflineQueue, OfflineQueueConfig

VALID_API_KEY = "waka_12345678-1234-4abc-8def-123456789abc"

_WAKAPULSE_ENV = [
    "WAKAPULSE_API_KEY",
    "WAKAPULSE_API_URL",
    "WAKAPULSE_PROJECT",
    "WAKAPULSE_HEARTBEAT_INTERVAL",
    "WAKAPULSE_DEBOUNCE_WINDOW",
    "WAKAPULSE_MAX_QUEUE_BYTES",
    "WAKAPULSE_BATCH_MAX_SIZE",
    "WAKAPULSE_TIMEOUT",
    "WAKAPULSE_MAX_RETRIES",
    "WAKAPULSE_QUEUE_DB_PATH",
    "WAKAPULSE_LOG_LEVEL",
    "WAKAPULSE_LOG_FILE",
    "WAKATIME_HOME",
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the developer's environment out of configuration tests."""
    for name in _WAKAPULSE_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_heartbeat() -> Callable[..., Heartbeat]:
    def factory(sequence_id: int, is_write: bool = False, timestamp: float = 0.0, file_path: str = "", project_id: str = "ShooterGame") -> Heartbeat:
        return Heartbeat(
            sequence_id=sequence_id,
            timestamp=timestamp or 1700000000.0 + sequence_id,
            project_id=project_id,
            file_path=file_path or f"/work/ShooterGame/Source/File{sequence_id % 10}.cpp",
            is_write=is_write,
            duration_since_last=0.0,
            language="C++",
            category=Category.CODING,
            entity_type=EntityType.FILE,
        )

    return factory


@pytest.fixture
def offline_queue(tmp_path):
    queue = OfflineQueue(OfflineQueueConfig(db_path=tmp_path / "offline_queue.db"))
    yield queue
    queue.close()


class RecordingToken(CancellationToken):
    """Cancellation token that records backoff waits instead of sleeping."""

    def __init__(self, cancel_after: int = -1) -> None:
        super().__init__()
        self.waits: List[float] = []
        self.cancel_after = cancel_after

    def wait(self, seconds: float) -> bool:
        self.waits.append(seconds)
        if self.cancel_after >= 0 and len(self.waits) > self.cancel_after:
            self.cancel()
        return self.is_cancelled


@pytest.fixture
def recording_token() -> RecordingToken:
    return RecordingToken()
