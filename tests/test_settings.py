"""Tests for client configuration, environment overrides and pipeline wiring."""

from pathlib import Path

from conftest import VALID_API_KEY
from wakapulse_client.config import ConfigManager, WakaPulseConfig, get_config_manager, get_current_config
from wakapulse_client.credential import ApiCredentials, CredentialStore
from wakapulse_client.orchestrator import PipelineConfig
from wakapulse_client.sender.http_sender import DEFAULT_API_BASE_URL


def test_defaults():
    config = WakaPulseConfig()

    assert config.activity.debounce_window_seconds == 2.0
    assert config.activity.heartbeat_interval_seconds == 120.0
    assert config.delivery.max_queue_bytes == 5 * 1024 * 1024
    assert config.delivery.batch_max_size == 50
    assert config.delivery.max_retries == 3
    assert config.delivery.queue_db_path == Path.home() / ".wakapulse" / "offline_queue.db"
    assert config.effective_api_base_url == DEFAULT_API_BASE_URL


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("WAKAPULSE_API_KEY", VALID_API_KEY)
    monkeypatch.setenv("WAKAPULSE_API_URL", "https://wakapi.example.test/api")
    monkeypatch.setenv("WAKAPULSE_HEARTBEAT_INTERVAL", "60")
    monkeypatch.setenv("WAKAPULSE_MAX_QUEUE_BYTES", "2048")
    monkeypatch.setenv("WAKAPULSE_QUEUE_DB_PATH", str(tmp_path / "q.db"))
    monkeypatch.setenv("WAKAPULSE_LOG_LEVEL", "debug")

    config = WakaPulseConfig()

    assert config.api_key == VALID_API_KEY
    assert config.api_base_url == "https://wakapi.example.test/api"
    assert config.activity.heartbeat_interval_seconds == 60.0
    assert config.delivery.max_queue_bytes == 2048
    assert config.delivery.queue_db_path == tmp_path / "q.db"
    assert config.logging.level == "DEBUG"


def test_invalid_numeric_override_keeps_default(monkeypatch):
    monkeypatch.setenv("WAKAPULSE_MAX_RETRIES", "several")

    assert WakaPulseConfig().delivery.max_retries == 3


def test_validate_reports_problems():
    config = WakaPulseConfig(api_key="nope", api_base_url="ftp://example.test")
    config.delivery.batch_max_size = 0
    config.delivery.backoff_jitter_ratio = 1.5

    is_valid, errors = config.validate()

    assert not is_valid
    assert "API key is malformed" in errors
    assert any("http://" in error for error in errors)
    assert any("Batch max size" in error for error in errors)
    assert any("jitter" in error for error in errors)

    assert WakaPulseConfig(api_key=VALID_API_KEY).validate() == (True, [])


def test_missing_key_is_reported():
    is_valid, errors = WakaPulseConfig().validate()
    assert not is_valid
    assert errors == ["API key is required"]


def test_credentials_file_fills_missing_values(tmp_path):
    store = CredentialStore(tmp_path)
    store.store_credentials(ApiCredentials(api_key=VALID_API_KEY, api_url="https://wakapi.example.test/api/"))

    config = ConfigManager().load_config(credential_store=store)

    assert config.api_key == VALID_API_KEY
    assert config.api_base_url == "https://wakapi.example.test/api"


def test_explicit_values_win_over_credentials_file(tmp_path, monkeypatch):
    store = CredentialStore(tmp_path)
    store.store_credentials(ApiCredentials(api_key=VALID_API_KEY))
    monkeypatch.setenv("WAKAPULSE_API_URL", "https://env.example.test")

    other_key = "0a1b2c3d-4e5f-4a6b-9c8d-7e6f5a4b3c2d"
    manager = ConfigManager()
    config = manager.load_config(api_key=other_key, credential_store=store)

    assert config.api_key == other_key
    assert config.api_base_url == "https://env.example.test"
    assert manager.get_config() is config
    assert manager.validate_config() == (True, [])


def test_config_manager_without_config():
    assert ConfigManager().validate_config() == (False, ["No configuration loaded"])


def test_pipeline_config_from_settings(tmp_path):
    settings = WakaPulseConfig(api_key=VALID_API_KEY)
    settings.activity.project_name = "ShooterGame"
    settings.activity.debounce_window_seconds = 1.0
    settings.delivery.queue_db_path = tmp_path / "q.db"
    settings.delivery.batch_max_size = 10
    settings.delivery.max_retries = 5
    settings.delivery.backoff_max_seconds = 30.0

    pipeline_config = PipelineConfig.from_settings(settings)

    assert pipeline_config.api_key == VALID_API_KEY
    assert pipeline_config.sender_config.api_key == VALID_API_KEY
    assert pipeline_config.sender_config.api_base_url == DEFAULT_API_BASE_URL
    assert pipeline_config.project_name == "ShooterGame"
    assert pipeline_config.debouncer_config.window_seconds == 1.0
    assert pipeline_config.queue_config.db_path == tmp_path / "q.db"
    assert pipeline_config.queue_config.max_batch_size == 10
    assert pipeline_config.batcher_config.max_batch_size == 10
    assert pipeline_config.dispatcher_config.max_retries == 5
    assert pipeline_config.dispatcher_config.backoff.max_delay == 30.0


def test_global_manager_tracks_current_config(tmp_path):
    config = get_config_manager().load_config(api_key=VALID_API_KEY, credential_store=CredentialStore(tmp_path))

    assert get_current_config() is config
