"""Pipeline orchestrator for coordinating the WakaPulse client heartbeat flow.

This module coordinates the entire pipeline:
Editor Hooks → Inbound Queue → Debouncer → Aggregator → Offline Queue → Dispatcher → API

It manages the lifecycle of all components and provides a unified interface
for the WakaPulse client application.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from loguru import logger

from ..batcher import BatcherConfig, HeartbeatBatcher
from ..core.aggregator import AggregatorConfig, HeartbeatAggregator
from ..core.debouncer import DebouncerConfig, EventDebouncer
from ..core.errors import ConfigError, WakaPulseError
from ..core.events import ActivityEvent
from ..core.identity import IdentityResolver
from ..credential import ValidationResult, validate_api_key
from ..dispatcher import BackoffPolicy, Dispatcher, DispatcherConfig, ScheduledTask
from ..queuer import EventProducer, EventQueue, EventQueueConfig
from ..sender import HTTPSender, SenderConfig
from ..sender.http_sender import DEFAULT_API_BASE_URL
from ..wal import OfflineQueue, OfflineQueueConfig, SequenceCounter

if TYPE_CHECKING:
    from ..config import WakaPulseConfig

UserNotifier = Callable[[str], None]


@dataclass
class PipelineConfig:
    """Configuration for the entire heartbeat pipeline."""

    # API settings
    api_base_url: str = DEFAULT_API_BASE_URL
    api_key: str = ""

    # Fallback project when no .uproject is found
    project_name: str = ""

    # Component configurations
    event_queue_config: EventQueueConfig = field(default_factory=EventQueueConfig)
    debouncer_config: DebouncerConfig = field(default_factory=DebouncerConfig)
    aggregator_config: AggregatorConfig = field(default_factory=AggregatorConfig)
    queue_config: OfflineQueueConfig = field(default_factory=OfflineQueueConfig)
    batcher_config: BatcherConfig = field(default_factory=BatcherConfig)
    sender_config: SenderConfig = field(default_factory=SenderConfig)
    dispatcher_config: DispatcherConfig = field(default_factory=DispatcherConfig)

    # Pipeline settings
    intake_interval_seconds: float = 0.5  # 0 = host calls process_events() itself
    run_dispatcher_thread: bool = True  # False = host calls force_dispatch() itself
    stats_report_interval: int = 300  # Compact and report stats every 5 minutes
    idle_key_seconds: float = 3600.0  # Forget debounce timers for files untouched this long

    def __post_init__(self):
        """Set up derived configurations."""
        self.sender_config.api_base_url = self.api_base_url or DEFAULT_API_BASE_URL
        self.sender_config.api_key = self.api_key

    @classmethod
    def from_settings(cls, settings: "WakaPulseConfig") -> "PipelineConfig":
        """Build a pipeline configuration from the client settings."""
        dispatcher = settings.get_dispatcher_config()
        return cls(
            api_base_url=settings.effective_api_base_url,
            api_key=settings.api_key,
            project_name=settings.activity.project_name,
            event_queue_config=EventQueueConfig(max_size=settings.activity.event_queue_max_size),
            debouncer_config=DebouncerConfig(window_seconds=settings.activity.debounce_window_seconds),
            aggregator_config=AggregatorConfig(heartbeat_interval_seconds=settings.activity.heartbeat_interval_seconds),
            queue_config=OfflineQueueConfig(**settings.get_queue_config()),
            batcher_config=BatcherConfig(**settings.get_batcher_config()),
            sender_config=SenderConfig(
                timeout_seconds=settings.delivery.timeout_seconds,
                plugin=settings.delivery.plugin,
            ),
            dispatcher_config=DispatcherConfig(
                poll_interval_seconds=dispatcher["poll_interval_seconds"],
                max_retries=dispatcher["max_retries"],
                backoff=BackoffPolicy(
                    base_delay=dispatcher["backoff_base"],
                    max_delay=dispatcher["backoff_max"],
                    jitter_ratio=dispatcher["backoff_jitter_ratio"],
                ),
                retry_warning_threshold=dispatcher["retry_warning_threshold"],
                max_user_warnings=dispatcher["max_user_warnings"],
                shutdown_grace_seconds=dispatcher["shutdown_grace_seconds"],
            ),
            intake_interval_seconds=settings.activity.intake_interval_seconds,
            stats_report_interval=settings.delivery.stats_report_interval,
        )


class PipelineOrchestrator:
    """Orchestrates the entire heartbeat processing pipeline."""

    def __init__(self, config: Optional[PipelineConfig] = None, notifier: Optional[UserNotifier] = None):
        """Initialize the pipeline orchestrator.

        Args:
            config: Pipeline configuration
            notifier: Shows an error to the user, e.g. an editor notification
        """
        self.config = config or PipelineConfig()
        self.notifier = notifier
        self._running = False
        self._intake_lock = threading.Lock()
        self._intake_task: Optional[ScheduledTask] = None
        self._maintenance_task: Optional[ScheduledTask] = None
        self._config_error_reported = False

        # Initialize components
        self._init_components()

        # Statistics
        self._start_time: Optional[datetime] = None
        self._last_stats_report: Optional[datetime] = None
        self._total_events_processed = 0
        self._total_heartbeats_stored = 0
        self._total_recovered = 0

    def _init_components(self) -> None:
        """Initialize all pipeline components."""
        logger.info("Initializing pipeline components...")

        self.offline_queue = OfflineQueue(self.config.queue_config)
        self.sequence_counter = SequenceCounter(self.offline_queue)
        logger.info(f"Initialized offline queue at {self.config.queue_config.db_path}")

        self.event_queue = EventQueue(self.config.event_queue_config)
        self.identity_resolver = IdentityResolver(default_project=self.config.project_name)
        self.debouncer = EventDebouncer(self.config.debouncer_config, self.identity_resolver)
        self.aggregator = HeartbeatAggregator(self.config.aggregator_config, self.sequence_counter, self.offline_queue)
        logger.info("Initialized debouncer and aggregator")

        self.batcher = HeartbeatBatcher(self.config.batcher_config, self.offline_queue)
        self.sender = HTTPSender(self.config.sender_config)
        self.dispatcher = Dispatcher(
            self.config.dispatcher_config,
            offline_queue=self.offline_queue,
            batcher=self.batcher,
            sender=self.sender,
            notifier=self.notifier,
        )
        logger.info(f"Initialized dispatcher for {self.sender.url}")

        # Create event producer for the host integration
        self.event_producer = EventProducer(queue=self.event_queue, component_name="orchestrator")

        logger.info("All pipeline components initialized")

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> bool:
        """Start the heartbeat pipeline.

        A missing or malformed API key does not prevent startup: heartbeats are
        still queued, only delivery waits for a valid key.

        Returns:
            True if started successfully, False otherwise
        """
        if self._running:
            logger.warning("Pipeline is already running")
            return True

        try:
            logger.info("Starting WakaPulse heartbeat pipeline...")
            self._start_time = datetime.now()

            # Records claimed by a crashed or abandoned run become deliverable again
            self._total_recovered = self._perform_crash_recovery()

            # A previous stop() shut the inbound channel
            self.event_queue.reopen()

            self._check_api_key()
            if self.config.run_dispatcher_thread:
                self.dispatcher.start()

            if self.config.intake_interval_seconds > 0:
                self._intake_task = ScheduledTask("WakaPulse-Intake", self._intake_step, error_delay=self.config.intake_interval_seconds)
                self._intake_task.start()

            self._maintenance_task = ScheduledTask("WakaPulse-Maintenance", self._maintenance_step, error_delay=self.config.stats_report_interval)
            self._maintenance_task.start()

            self._running = True
            logger.info(f"Pipeline started successfully - API: {self.sender.url}, pending heartbeats: {self.offline_queue.pending_count()}")
            return True

        except (WakaPulseError, sqlite3.Error, OSError) as e:
            logger.error(f"Failed to start pipeline: {e}")
            return False

    def stop(self) -> bool:
        """Stop the pipeline gracefully.

        Inbound events still waiting are turned into heartbeats and stored, the
        dispatcher gets its grace period to finish an in-flight call and the
        queue is checkpointed. Anything not delivered stays on disk.

        Returns:
            True if stopped successfully, False otherwise
        """
        if not self._running:
            logger.warning("Pipeline is not running")
            return True

        logger.info("Stopping WakaPulse heartbeat pipeline...")
        self._running = False

        if self._intake_task:
            self._intake_task.stop(self.config.dispatcher_config.shutdown_grace_seconds)

        # Persist whatever the host pushed before shutdown
        remaining = self.event_queue.shutdown()
        if remaining:
            logger.info(f"Storing {len(remaining)} remaining events before shutdown")
            with self._intake_lock:
                self._ingest(remaining)

        stopped = self.dispatcher.stop()

        if self._maintenance_task:
            self._maintenance_task.stop(self.config.dispatcher_config.shutdown_grace_seconds)

        self.offline_queue.close()

        self._log_final_stats()
        logger.info("Pipeline stopped successfully" if stopped else "Pipeline stopped; an in-flight delivery was abandoned")
        return stopped

    def emit_event(self, event: ActivityEvent) -> bool:
        """Emit an activity event into the pipeline.

        Args:
            event: Event to emit

        Returns:
            True if accepted, False if rejected
        """
        if not self._running:
            logger.warning("Pipeline not running, dropping event")
            return False

        return self.event_producer.emit(event)

    def get_producer(self, component_name: str) -> EventProducer:
        """Get an event producer for an editor hook.

        Args:
            component_name: Name of the hook

        Returns:
            Event producer configured for this pipeline
        """
        return EventProducer(queue=self.event_queue, component_name=component_name)

    def process_events(self, max_events: Optional[int] = None) -> int:
        """Debounce and aggregate queued inbound events.

        Args:
            max_events: Upper bound on events handled in this call

        Returns:
            Number of heartbeats stored
        """
        with self._intake_lock:
            events = self.event_queue.dequeue_batch(max_events)
            return self._ingest(events)

    def configure_api_key(self, api_key: str, api_url: Optional[str] = None) -> bool:
        """Install a new API key and re-enable delivery.

        Returns:
            True if the key is valid and delivery is enabled
        """
        result = validate_api_key(api_key)
        if result != ValidationResult.VALID:
            logger.error(f"Refusing to configure API key: key is {result.value}")
            return False

        self.sender.set_api_key(api_key.strip())
        if api_url:
            self.sender.config.api_base_url = api_url.rstrip("/")

        self._config_error_reported = False
        self.dispatcher.enable()
        logger.info(f"API key configured, delivering to {self.sender.url}")
        return True

    def force_dispatch(self, max_batches: int = 100) -> int:
        """Store pending inbound events and deliver queued batches right away.

        Returns:
            Number of batches delivered
        """
        self.process_events()
        return self.dispatcher.drain(max_batches)

    def get_pipeline_stats(self) -> Dict[str, Any]:
        """Get comprehensive pipeline statistics.

        Returns:
            Dictionary with pipeline statistics
        """
        return {
            "pipeline": {
                "running": self._running,
                "start_time": self._start_time.isoformat() if self._start_time else None,
                "uptime_seconds": ((datetime.now() - self._start_time).total_seconds() if self._start_time else 0),
                "events_processed": self._total_events_processed,
                "heartbeats_stored": self._total_heartbeats_stored,
                "recovered_in_flight": self._total_recovered,
            },
            "event_queue": self.event_queue.get_stats(),
            "debouncer": self.debouncer.get_stats(),
            "aggregator": self.aggregator.get_stats(),
            "offline_queue": self.offline_queue.get_stats(),
            "batcher": self.batcher.get_stats(),
            "sender": self.sender.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
        }

    def _ingest(self, events: List[ActivityEvent]) -> int:
        stored = 0
        for event in events:
            self._total_events_processed += 1
            try:
                pulse = self.debouncer.observe(event)
                if pulse is None:
                    continue
                if self.aggregator.on_pulse(pulse) is not None:
                    stored += 1
            except (WakaPulseError, sqlite3.Error, OSError) as e:
                logger.error(f"Failed to record {event.event_kind.value} event for {event.file_path}: {e}")

        self._total_heartbeats_stored += stored
        return stored

    def _intake_step(self) -> float:
        self.process_events()
        return self.config.intake_interval_seconds

    def _maintenance_step(self) -> float:
        self._perform_maintenance()
        self._report_stats()
        return self.config.stats_report_interval

    def _perform_crash_recovery(self) -> int:
        """Return records left in flight by a previous run to the deliverable pool.

        Returns:
            Number of recovered records
        """
        logger.info("Performing crash recovery...")
        recovered = self.offline_queue.recover_in_flight()
        if recovered:
            logger.info(f"Recovered {recovered} in-flight heartbeats from previous session")
        return recovered

    def _check_api_key(self) -> bool:
        result = validate_api_key(self.sender.config.api_key)
        if result == ValidationResult.VALID:
            self.dispatcher.enable()
            return True

        error = ConfigError(f"WakaPulse: API key is {result.value}. Heartbeats are kept offline until a valid key is configured.")
        self.dispatcher.disable(str(error))

        # Surfaced once per missing key, not on every restart of the loop
        if not self._config_error_reported:
            self._config_error_reported = True
            logger.error(str(error))
            self._notify(str(error))
        return False

    def _notify(self, message: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier(message)
        except Exception as e:
            logger.error(f"User notifier failed: {e}")

    def _perform_maintenance(self) -> None:
        """Perform periodic queue maintenance tasks."""
        purged = self.offline_queue.compact()
        if purged:
            logger.info(f"Purged {purged} delivered or rejected heartbeats during maintenance")

        # The debouncer is only touched under the intake lock
        with self._intake_lock:
            forgotten = self.debouncer.forget_idle(time.time() - self.config.idle_key_seconds)
        if forgotten:
            logger.debug(f"Forgot {forgotten} idle debounce timers")

    def _report_stats(self) -> None:
        """Report current pipeline statistics."""
        stats = self.get_pipeline_stats()

        queue_stats = stats["offline_queue"]
        sender_stats = stats["sender"]
        dispatcher_stats = stats["dispatcher"]

        logger.info(
            f"Pipeline Stats - "
            f"Inbound: {stats['event_queue']['current_size']}/{stats['event_queue']['max_size']}, "
            f"Queued: {queue_stats.get('pending_count', 0)} heartbeats "
            f"({queue_stats.get('utilization', 0.0):.1%} of capacity), "
            f"Batches sent: {sender_stats['total_batches_sent']}, "
            f"Heartbeats sent: {sender_stats['total_heartbeats_sent']}, "
            f"Success rate: {sender_stats['success_rate']:.1%}"
            f"{'' if dispatcher_stats['enabled'] else ' [DELIVERY DISABLED]'}"
        )

        self._last_stats_report = datetime.now()

    def _log_final_stats(self) -> None:
        """Log final pipeline statistics on shutdown."""
        stats = self.get_pipeline_stats()

        logger.info("Final Pipeline Statistics:")
        logger.info(f"  Uptime: {stats['pipeline']['uptime_seconds']:.1f} seconds")
        logger.info(f"  Events processed: {stats['pipeline']['events_processed']}")
        logger.info(f"  Heartbeats stored: {stats['pipeline']['heartbeats_stored']}")
        logger.info(f"  Heartbeats sent: {stats['sender']['total_heartbeats_sent']}")
        logger.info(f"  Heartbeats kept offline: {stats['offline_queue'].get('pending_count', 0)}")


def create_default_pipeline(
    api_key: str,
    api_base_url: str = DEFAULT_API_BASE_URL,
    queue_db_path: Optional[Path] = None,
    notifier: Optional[UserNotifier] = None,
) -> PipelineOrchestrator:
    """Create a pipeline orchestrator with default configuration.

    Args:
        api_key: API key for authentication
        api_base_url: Base URL of the heartbeat API
        queue_db_path: Optional path for the offline queue database
        notifier: Optional user-facing error callback

    Returns:
        Configured pipeline orchestrator
    """
    config = PipelineConfig(api_base_url=api_base_url, api_key=api_key)

    if queue_db_path:
        config.queue_config.db_path = Path(queue_db_path)

    return PipelineOrchestrator(config, notifier=notifier)
