"""Tests for API key validation and the WakaTime config file store."""

import os
import stat

import pytest
from pydantic import ValidationError

from conftest import VALID_API_KEY
from wakapulse_client.credential import ApiCredentials, CredentialStore, ValidationResult, default_config_dir, validate_api_key

OTHER_KEY = "0a1b2c3d-4e5f-4a6b-9c8d-7e6f5a4b3c2d"


@pytest.mark.parametrize(
    "api_key, expected",
    [
        (VALID_API_KEY, ValidationResult.VALID),
        (OTHER_KEY, ValidationResult.VALID),
        (f"  {OTHER_KEY.upper()}  ", ValidationResult.VALID),
        ("", ValidationResult.MISSING),
        ("   ", ValidationResult.MISSING),
        (None, ValidationResult.MISSING),
        ("not-a-key", ValidationResult.MALFORMED),
        ("waka_12345678-1234-1abc-8def-123456789abc", ValidationResult.MALFORMED),
    ],
)
def test_validate_api_key(api_key, expected):
    assert validate_api_key(api_key) == expected


def test_api_credentials_normalize_url():
    credentials = ApiCredentials(api_key=VALID_API_KEY, api_url="https://wakapi.example.test/api/compat/wakatime/v1/users/current/")
    assert credentials.api_url == "https://wakapi.example.test/api/compat/wakatime/v1/users/current"

    assert ApiCredentials(api_key=VALID_API_KEY, api_url="  ").api_url is None


@pytest.mark.parametrize("kwargs", [{"api_key": "bogus"}, {"api_key": VALID_API_KEY, "api_url": "ftp://example.test"}])
def test_api_credentials_reject_bad_values(kwargs):
    with pytest.raises(ValidationError):
        ApiCredentials(**kwargs)


def test_store_and_load_credentials(tmp_path):
    store = CredentialStore(tmp_path)

    assert store.load_credentials() == (False, None)

    assert store.store_credentials(ApiCredentials(api_key=VALID_API_KEY, api_url="https://api.example.test/v1/users/current"))

    success, credentials = store.load_credentials()
    assert success
    assert credentials.api_key == VALID_API_KEY
    assert credentials.api_url == "https://api.example.test/v1/users/current"
    assert store.has_valid_credentials()


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
def test_credentials_file_is_owner_only(tmp_path):
    store = CredentialStore(tmp_path)
    store.store_credentials(ApiCredentials(api_key=VALID_API_KEY))

    mode = stat.S_IMODE(store.credentials_file.stat().st_mode)
    assert mode == stat.S_IRUSR | stat.S_IWUSR


def test_store_keeps_unrelated_settings(tmp_path):
    """Test that updating the key leaves the rest of .wakatime.cfg alone."""
    config_file = tmp_path / ".wakatime.cfg"
    config_file.write_text("[settings]\ndebug = true\nexclude = ^/tmp/%\napi_url = https://old.example.test\n\n[git]\ndisable_submodules = true\n")

    store = CredentialStore(tmp_path)
    assert store.store_credentials(ApiCredentials(api_key=VALID_API_KEY))

    settings = store.read_settings()
    assert settings["api_key"] == VALID_API_KEY
    assert settings["debug"] == "true"
    assert settings["exclude"] == "^/tmp/%"
    assert "api_url" not in settings, "An empty URL removes the entry"
    assert "[git]" in config_file.read_text()


def test_remove_credentials(tmp_path):
    store = CredentialStore(tmp_path)
    store.store_credentials(ApiCredentials(api_key=VALID_API_KEY, api_url="https://api.example.test"))

    assert store.remove_credentials()
    assert store.load_credentials() == (False, None)
    assert store.read_settings() == {}


def test_malformed_stored_key_is_not_loaded(tmp_path):
    (tmp_path / ".wakatime.cfg").write_text("[settings]\napi_key = definitely-not-valid\n")

    store = CredentialStore(tmp_path)

    assert store.load_credentials() == (False, None)
    assert store.read_settings()["api_key"] == "definitely-not-valid"


def test_default_config_dir_honours_wakatime_home(monkeypatch, tmp_path):
    monkeypatch.setenv("WAKATIME_HOME", str(tmp_path))
    assert default_config_dir() == tmp_path
    assert CredentialStore().credentials_file == tmp_path / ".wakatime.cfg"
