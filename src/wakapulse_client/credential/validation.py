"""API key validation."""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional

API_KEY_PATTERN = re.compile(r"^(waka_)?[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)


class ValidationResult(Enum):
    """Enumeration of API key validation outcomes."""

    VALID = "valid"
    MISSING = "missing"  # No key configured
    MALFORMED = "malformed"  # Key does not look like an API key


def validate_api_key(api_key: Optional[str]) -> ValidationResult:
    if api_key is None or not api_key.strip():
        return ValidationResult.MISSING
    if not API_KEY_PATTERN.match(api_key.strip()):
        return ValidationResult.MALFORMED
    return ValidationResult.VALID
