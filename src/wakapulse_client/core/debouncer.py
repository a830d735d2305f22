"""Event debouncer for raw editor activity.

Editors fire bursts of callbacks (asset added, saved, focus changed) for a
single user action. The debouncer collapses each burst into one activity
pulse per (project, file) and window. Saves are never suppressed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger

from .events import ActivityEvent, ActivityKey, ActivityPulse, EventKind
from .identity import IdentityResolver


@dataclass
class DebouncerConfig:
    """Configuration for the event debouncer."""

    window_seconds: float = 2.0  # Minimum time between pulses for one key


class EventDebouncer:
    """Turns raw activity events into debounced activity pulses."""

    def __init__(self, config: Optional[DebouncerConfig] = None, identity_resolver: Optional[IdentityResolver] = None):
        """Initialize the debouncer.

        Args:
            config: Debouncer configuration
            identity_resolver: Fills in project/language the host did not supply
        """
        self.config = config or DebouncerConfig()
        self.identity_resolver = identity_resolver or IdentityResolver()
        self._last_pulse: Dict[ActivityKey, float] = {}

        # Statistics
        self._total_observed = 0
        self._total_emitted = 0
        self._total_suppressed = 0

    def observe(self, event: ActivityEvent) -> Optional[ActivityPulse]:
        """Observe one raw event.

        Args:
            event: Raw activity event

        Returns:
            A pulse if the event opens a new window or is a save, None otherwise
        """
        self._total_observed += 1

        project_id = event.project_id
        language = event.language
        if not project_id or not language:
            identity = self.identity_resolver.resolve(event.file_path)
            project_id = project_id or identity.project_id
            language = language or identity.language

        key = (project_id, event.file_path)
        is_write = event.event_kind == EventKind.SAVED
        last = self._last_pulse.get(key)

        if not is_write and last is not None:
            elapsed = event.timestamp - last
            # A negative elapsed time means the clock moved backwards; treat it as a new window
            if 0 <= elapsed < self.config.window_seconds:
                self._total_suppressed += 1
                logger.trace(f"Suppressed {event.event_kind.value} on {event.file_path} ({elapsed:.2f}s into window)")
                return None

        self._last_pulse[key] = event.timestamp
        self._total_emitted += 1

        return ActivityPulse(
            timestamp=event.timestamp,
            project_id=project_id,
            file_path=event.file_path,
            language=language,
            is_write=is_write,
            event_kind=event.event_kind,
            category=event.category,
            entity_type=event.entity_type,
        )

    def forget_idle(self, older_than: float) -> int:
        """Drop per-key timers whose last pulse is older than a timestamp.

        Returns:
            Number of keys forgotten
        """
        stale = [key for key, last in self._last_pulse.items() if last < older_than]
        for key in stale:
            del self._last_pulse[key]
        return len(stale)

    def get_stats(self) -> Dict[str, Any]:
        """Get debouncer statistics."""
        return {
            "tracked_keys": len(self._last_pulse),
            "total_observed": self._total_observed,
            "total_emitted": self._total_emitted,
            "total_suppressed": self._total_suppressed,
            "window_seconds": self.config.window_seconds,
        }
