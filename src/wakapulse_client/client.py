"""WakaPulse client facade used by editor integrations.

The client integrates:
- Configuration from settings, environment and ``~/.wakatime.cfg``
- Logging setup
- The heartbeat pipeline
- Optional signal handling for standalone use
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

from loguru import logger
from pydantic import ValidationError

from .config import WakaPulseConfig, get_config_manager, setup_logging
from .core.events import ActivityEvent, Category, EntityType, EventKind
from .core.signal_handler import SignalHandler
from .credential import ApiCredentials, CredentialStore
from .orchestrator import PipelineConfig, PipelineOrchestrator


class WakaPulseClient:
    """Records editor activity and reports it as heartbeats."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base_url: Optional[str] = None,
        credential_store: Optional[CredentialStore] = None,
        notifier: Optional[Callable[[str], None]] = None,
        configure_logging: bool = True,
        install_signal_handlers: bool = False,
    ):
        """Initialize WakaPulse client.

        Args:
            api_key: API key, overrides environment and config file
            api_base_url: API base URL, overrides environment and config file
            credential_store: Where credentials are read from and saved to
            notifier: Shows an error to the user, e.g. an editor notification
            configure_logging: Install the console and file log sinks
            install_signal_handlers: Flush and exit on SIGINT/SIGTERM (standalone use)
        """
        self.credential_store = credential_store or CredentialStore()
        self.config_manager = get_config_manager()
        self.config: WakaPulseConfig = self.config_manager.load_config(
            api_key=api_key,
            api_base_url=api_base_url,
            credential_store=self.credential_store,
        )

        if configure_logging:
            setup_logging(self.config.logging)

        is_valid, errors = self.config.validate()
        if not is_valid:
            for error in errors:
                logger.warning(f"Configuration problem: {error}")

        self.pipeline = PipelineOrchestrator(PipelineConfig.from_settings(self.config), notifier=notifier)

        self.signal_handler: Optional[SignalHandler] = None
        if install_signal_handlers:
            self.signal_handler = SignalHandler()
            self.signal_handler.register_cleanup(self.stop)

        logger.info(f"Initialized WakaPulse client on {self.config.hostname} ({self.config.platform})")

    def start(self) -> bool:
        """Start the WakaPulse client.

        Returns:
            True if started successfully, False otherwise
        """
        logger.info("Starting WakaPulse client...")
        return self.pipeline.start()

    def stop(self) -> bool:
        """Stop the client, keeping undelivered heartbeats on disk."""
        logger.info("Stopping WakaPulse client...")
        return self.pipeline.stop()

    def record_activity(
        self,
        file_path: str,
        event_kind: EventKind = EventKind.FOCUS_CHANGED,
        project_id: str = "",
        language: Optional[str] = None,
        category: Category = Category.CODING,
        entity_type: EntityType = EntityType.FILE,
        timestamp: Optional[float] = None,
    ) -> bool:
        """Report one editor callback.

        Returns:
            True if the event was accepted by the inbound queue
        """
        event = ActivityEvent(
            file_path=file_path,
            event_kind=event_kind,
            timestamp=timestamp if timestamp is not None else time.time(),
            project_id=project_id,
            language=language,
            category=category,
            entity_type=entity_type,
        )
        return self.pipeline.emit_event(event)

    def record_save(self, file_path: str, **kwargs: Any) -> bool:
        return self.record_activity(file_path, event_kind=EventKind.SAVED, **kwargs)

    def set_api_key(self, api_key: str, api_url: Optional[str] = None, persist: bool = True) -> bool:
        """Validate and install a new API key, optionally saving it to the config file.

        Returns:
            True if the key was accepted
        """
        try:
            credentials = ApiCredentials(api_key=api_key, api_url=api_url)
        except ValidationError as e:
            logger.error(f"Invalid credentials: {e.errors()[0]['msg']}")
            return False

        if persist and not self.credential_store.store_credentials(credentials):
            logger.warning("API key is active for this session but could not be saved")

        self.config.api_key = credentials.api_key
        if credentials.api_url:
            self.config.api_base_url = credentials.api_url

        return self.pipeline.configure_api_key(credentials.api_key, credentials.api_url)

    def flush(self) -> int:
        """Deliver everything queued now instead of waiting for the next cycle.

        Returns:
            Number of batches delivered
        """
        return self.pipeline.force_dispatch()

    def get_stats(self) -> Dict[str, Any]:
        return self.pipeline.get_pipeline_stats()

    def __enter__(self) -> "WakaPulseClient":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
