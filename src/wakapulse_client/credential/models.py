"""Pydantic models for stored credentials."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .validation import ValidationResult, validate_api_key


class ApiCredentials(BaseModel):
    """Credentials used to authenticate heartbeats."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True, extra="forbid")

    api_key: str = Field(..., min_length=1, description="Secret API key")
    api_url: Optional[str] = Field(None, pattern=r"^https?://\S+$", description="API base URL override, no trailing slash needed")

    @field_validator("api_key")
    @classmethod
    def check_api_key(cls, v: str) -> str:
        result = validate_api_key(v)
        if result != ValidationResult.VALID:
            raise ValueError(f"API key is {result.value}")
        return v

    @field_validator("api_url", mode="before")
    @classmethod
    def normalize_api_url(cls, v: Any) -> Optional[str]:
        """Treat an empty URL as unset and drop a trailing slash."""
        if v is None:
            return None
        v = str(v).strip()
        if not v:
            return None
        return v.rstrip("/")

    def to_settings(self) -> Dict[str, str]:
        """Convert to ``[settings]`` entries; an absent URL is an empty value."""
        return {"api_key": self.api_key, "api_url": self.api_url or ""}
