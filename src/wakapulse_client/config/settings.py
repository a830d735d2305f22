"""Configuration management for the WakaPulse client.

This module provides configuration management that integrates with the
WakaTime credentials file and allows environment variable overrides.
"""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from loguru import logger

from ..credential import CredentialStore, ValidationResult, validate_api_key
from ..sender.http_sender import DEFAULT_API_BASE_URL


def _default_data_dir() -> Path:
    return Path.home() / ".wakapulse"


@dataclass
class ActivityConfig:
    """Configuration for turning editor activity into heartbeats."""

    debounce_window_seconds: float = 2.0
    heartbeat_interval_seconds: float = 120.0
    project_name: str = ""  # Used when no .uproject is found above a file
    intake_interval_seconds: float = 0.5  # 0 = host drives process_events()
    event_queue_max_size: int = 1000


@dataclass
class DeliveryConfig:
    """Configuration for queueing and delivering heartbeats."""

    # Offline queue
    queue_db_path: Path = field(default_factory=lambda: _default_data_dir() / "offline_queue.db")
    max_queue_bytes: int = 5 * 1024 * 1024
    vacuum_threshold: int = 10000

    # Batching
    batch_max_size: int = 50

    # Sender
    timeout_seconds: float = 30.0
    plugin: str = "unreal-wakatime/1.0.0"

    # Dispatcher
    poll_interval_seconds: float = 5.0
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 60.0
    backoff_jitter_ratio: float = 0.1
    retry_warning_threshold: int = 10
    max_user_warnings: int = 3
    shutdown_grace_seconds: float = 5.0

    # Maintenance
    stats_report_interval: int = 300  # 5 minutes


@dataclass
class LoggingConfig:
    """Configuration for loguru sinks."""

    level: str = "INFO"
    to_console: bool = True
    to_file: bool = True
    file_path: Path = field(default_factory=lambda: _default_data_dir() / "wakapulse.log")
    rotation: str = "10 MB"
    retention: str = "7 days"


@dataclass
class WakaPulseConfig:
    """Complete WakaPulse client configuration."""

    # Server settings
    api_base_url: str = ""
    api_key: str = ""

    # Component configurations
    activity: ActivityConfig = field(default_factory=ActivityConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # System information
    hostname: str = field(default_factory=platform.node)
    platform: str = field(default_factory=lambda: platform.system().lower())

    def __post_init__(self):
        """Apply environment variable overrides."""
        self._apply_env_overrides()

    def _apply_env_overrides(self):
        """Apply configuration overrides from environment variables."""
        if api_key := os.getenv("WAKAPULSE_API_KEY"):
            self.api_key = api_key

        if api_base_url := os.getenv("WAKAPULSE_API_URL"):
            self.api_base_url = api_base_url

        if project_name := os.getenv("WAKAPULSE_PROJECT"):
            self.activity.project_name = project_name

        self._override_number("WAKAPULSE_HEARTBEAT_INTERVAL", self.activity, "heartbeat_interval_seconds", float)
        self._override_number("WAKAPULSE_DEBOUNCE_WINDOW", self.activity, "debounce_window_seconds", float)
        self._override_number("WAKAPULSE_MAX_QUEUE_BYTES", self.delivery, "max_queue_bytes", int)
        self._override_number("WAKAPULSE_BATCH_MAX_SIZE", self.delivery, "batch_max_size", int)
        self._override_number("WAKAPULSE_TIMEOUT", self.delivery, "timeout_seconds", float)
        self._override_number("WAKAPULSE_MAX_RETRIES", self.delivery, "max_retries", int)

        if queue_db_path := os.getenv("WAKAPULSE_QUEUE_DB_PATH"):
            self.delivery.queue_db_path = Path(queue_db_path)

        if log_level := os.getenv("WAKAPULSE_LOG_LEVEL"):
            self.logging.level = log_level.upper()

        if log_file := os.getenv("WAKAPULSE_LOG_FILE"):
            self.logging.file_path = Path(log_file)

    @staticmethod
    def _override_number(env_name: str, target: object, attribute: str, cast) -> None:
        raw = os.getenv(env_name)
        if not raw:
            return
        try:
            setattr(target, attribute, cast(raw))
        except ValueError:
            logger.warning(f"Invalid value for {env_name}: {raw}")

    def apply_credentials(self, store: CredentialStore) -> bool:
        """Fill the API key and URL from the WakaTime config file when not set.

        Returns:
            True if anything was taken from the file
        """
        settings = store.read_settings()
        applied = False

        if not self.api_key and settings.get("api_key"):
            self.api_key = settings["api_key"]
            applied = True

        if not self.api_base_url and settings.get("api_url"):
            self.api_base_url = settings["api_url"].rstrip("/")
            applied = True

        if applied:
            logger.info(f"Applied credentials from {store.credentials_file}")
        return applied

    @property
    def effective_api_base_url(self) -> str:
        return self.api_base_url or DEFAULT_API_BASE_URL

    def get_queue_config(self) -> dict:
        """Get configuration for the offline queue."""
        return {
            "db_path": self.delivery.queue_db_path,
            "max_queue_bytes": self.delivery.max_queue_bytes,
            "max_batch_size": self.delivery.batch_max_size,
            "vacuum_threshold": self.delivery.vacuum_threshold,
        }

    def get_batcher_config(self) -> dict:
        """Get configuration for the batcher."""
        return {"max_batch_size": self.delivery.batch_max_size}

    def get_sender_config(self) -> dict:
        """Get configuration for the HTTP sender."""
        return {
            "api_base_url": self.effective_api_base_url,
            "api_key": self.api_key,
            "timeout_seconds": self.delivery.timeout_seconds,
            "plugin": self.delivery.plugin,
        }

    def get_dispatcher_config(self) -> dict:
        """Get configuration for the dispatcher."""
        return {
            "poll_interval_seconds": self.delivery.poll_interval_seconds,
            "max_retries": self.delivery.max_retries,
            "backoff_base": self.delivery.backoff_base_seconds,
            "backoff_max": self.delivery.backoff_max_seconds,
            "backoff_jitter_ratio": self.delivery.backoff_jitter_ratio,
            "retry_warning_threshold": self.delivery.retry_warning_threshold,
            "max_user_warnings": self.delivery.max_user_warnings,
            "shutdown_grace_seconds": self.delivery.shutdown_grace_seconds,
        }

    def validate(self) -> tuple[bool, list[str]]:
        """Validate the configuration.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = []

        key_result = validate_api_key(self.api_key)
        if key_result == ValidationResult.MISSING:
            errors.append("API key is required")
        elif key_result == ValidationResult.MALFORMED:
            errors.append("API key is malformed")

        if self.api_base_url and not self.api_base_url.startswith(("http://", "https://")):
            errors.append("API base URL must start with http:// or https://")

        if self.activity.heartbeat_interval_seconds <= 0:
            errors.append("Heartbeat interval must be positive")

        if self.activity.debounce_window_seconds < 0:
            errors.append("Debounce window must not be negative")

        if self.delivery.max_queue_bytes <= 0:
            errors.append("Max queue bytes must be positive")

        if self.delivery.batch_max_size <= 0:
            errors.append("Batch max size must be positive")

        if self.delivery.max_retries < 0:
            errors.append("Max retries must not be negative")

        if not 0 <= self.delivery.backoff_jitter_ratio < 1:
            errors.append("Backoff jitter ratio must be in [0, 1)")

        return len(errors) == 0, errors


class ConfigManager:
    """Manages WakaPulse client configuration."""

    def __init__(self):
        """Initialize configuration manager."""
        self._config: Optional[WakaPulseConfig] = None

    def load_config(
        self,
        api_key: Optional[str] = None,
        api_base_url: Optional[str] = None,
        credential_store: Optional[CredentialStore] = None,
    ) -> WakaPulseConfig:
        """Load configuration with optional overrides.

        Explicit arguments win over environment variables, which win over
        the WakaTime config file.

        Args:
            api_key: API key override
            api_base_url: API base URL override
            credential_store: Where to look for ``.wakatime.cfg``

        Returns:
            Configured WakaPulseConfig instance
        """
        config = WakaPulseConfig()

        if api_key:
            config.api_key = api_key

        if api_base_url:
            config.api_base_url = api_base_url

        config.apply_credentials(credential_store or CredentialStore())

        self._config = config
        return config

    def get_config(self) -> Optional[WakaPulseConfig]:
        """Get current configuration."""
        return self._config

    def validate_config(self) -> tuple[bool, list[str]]:
        """Validate current configuration.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        if not self._config:
            return False, ["No configuration loaded"]

        return self._config.validate()


# Global configuration manager instance
_config_manager = ConfigManager()


def get_config_manager() -> ConfigManager:
    """Get the global configuration manager."""
    return _config_manager


def get_current_config() -> Optional[WakaPulseConfig]:
    """Get the current configuration."""
    return _config_manager.get_config()
