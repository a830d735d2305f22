"""Credential storage in the shared WakaTime config file.

This module handles:
- Reading ``api_key`` and ``api_url`` from the ``[settings]`` section of
  ``~/.wakatime.cfg`` (the directory can be moved with ``WAKATIME_HOME``)
- Updating those entries without touching the rest of the file
- Writing atomically with owner-only permissions
"""

from __future__ import annotations

import configparser
import os
import stat
from pathlib import Path
from typing import Dict, Optional

from loguru import logger
from pydantic import ValidationError

from .models import ApiCredentials

CONFIG_FILE_NAME = ".wakatime.cfg"
SETTINGS_SECTION = "settings"


def default_config_dir() -> Path:
    if home := os.getenv("WAKATIME_HOME"):
        return Path(home).expanduser()
    return Path.home()


class CredentialStore:
    """Reads and writes credentials in the WakaTime config file."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize credential store.

        Args:
            config_dir: Directory holding ``.wakatime.cfg`` (defaults to the home directory)
        """
        self.config_dir = Path(config_dir) if config_dir is not None else default_config_dir()
        self.credentials_file = self.config_dir / CONFIG_FILE_NAME

    def load_credentials(self) -> tuple[bool, Optional[ApiCredentials]]:
        """Load stored credentials.

        Returns:
            Tuple of (success, credentials)
        """
        settings = self.read_settings()
        if not settings.get("api_key"):
            logger.debug(f"No api_key found in {self.credentials_file}")
            return False, None

        try:
            credentials = ApiCredentials(api_key=settings["api_key"], api_url=settings.get("api_url"))
        except ValidationError as e:
            logger.warning(f"Invalid credentials in {self.credentials_file}: {e.errors()[0]['msg']}")
            return False, None

        logger.debug(f"Loaded credentials from {self.credentials_file}")
        return True, credentials

    def has_valid_credentials(self) -> bool:
        success, _ = self.load_credentials()
        return success

    def store_credentials(self, credentials: ApiCredentials) -> bool:
        """Store credentials, keeping unrelated settings.

        An empty value removes the corresponding entry.

        Returns:
            True if stored successfully, False otherwise
        """
        try:
            parser = self._read_parser()
            if not parser.has_section(SETTINGS_SECTION):
                parser.add_section(SETTINGS_SECTION)

            dirty = False
            for key, value in credentials.to_settings().items():
                dirty |= self._update_entry(parser, key, value)

            if not dirty and self.credentials_file.exists():
                logger.debug("Credentials unchanged, nothing to save")
                return True

            self._write_parser(parser)
            logger.info(f"Stored credentials in {self.credentials_file}")
            return True

        except (OSError, configparser.Error) as e:
            logger.error(f"Failed to store credentials: {e}")
            return False

    def remove_credentials(self) -> bool:
        """Remove the API key and URL from the config file.

        Returns:
            True if removed (or nothing to remove), False otherwise
        """
        try:
            parser = self._read_parser()
            if not parser.has_section(SETTINGS_SECTION):
                return True

            dirty = self._update_entry(parser, "api_key", "")
            dirty |= self._update_entry(parser, "api_url", "")
            if dirty:
                self._write_parser(parser)
                logger.info(f"Removed credentials from {self.credentials_file}")
            return True

        except (OSError, configparser.Error) as e:
            logger.error(f"Failed to remove credentials: {e}")
            return False

    def read_settings(self) -> Dict[str, str]:
        """Return the ``[settings]`` section as a plain dict (empty if missing or unreadable)."""
        try:
            parser = self._read_parser()
        except (OSError, configparser.Error) as e:
            logger.error(f"Failed to read {self.credentials_file}: {e}")
            return {}

        if not parser.has_section(SETTINGS_SECTION):
            return {}
        return {key: value.strip() for key, value in parser.items(SETTINGS_SECTION)}

    def _read_parser(self) -> configparser.ConfigParser:
        parser = configparser.ConfigParser(interpolation=None)
        if self.credentials_file.exists():
            with open(self.credentials_file, "r", encoding="utf-8") as f:
                parser.read_file(f)
        return parser

    def _write_parser(self, parser: configparser.ConfigParser) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)

        # Write to a temporary file first
        temp_file = self.credentials_file.with_suffix(".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            parser.write(f)

        # Owner read/write only
        os.chmod(temp_file, stat.S_IRUSR | stat.S_IWUSR)

        temp_file.replace(self.credentials_file)

    @staticmethod
    def _update_entry(parser: configparser.ConfigParser, key: str, value: str) -> bool:
        if not value:
            if parser.has_option(SETTINGS_SECTION, key):
                parser.remove_option(SETTINGS_SECTION, key)
                return True
            return False

        if parser.get(SETTINGS_SECTION, key, fallback=None) != value:
            parser.set(SETTINGS_SECTION, key, value)
            return True
        return False
