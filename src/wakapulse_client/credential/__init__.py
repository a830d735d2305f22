"""WakaPulse credential management module.

Reads and writes the API key in the shared WakaTime config file and
validates it before the dispatcher is allowed to use it.
"""

from .models import ApiCredentials
from .store import CredentialStore, default_config_dir
from .validation import ValidationResult, validate_api_key

__all__ = [
    "ApiCredentials",
    "CredentialStore",
    "ValidationResult",
    "default_config_dir",
    "validate_api_key",
]
