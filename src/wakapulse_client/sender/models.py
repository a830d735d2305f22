"""Pydantic models for the heartbeat bulk API."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class HeartbeatPayload(BaseModel):
    """One heartbeat object in a bulk request body."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    time: float = Field(..., gt=0, description="Unix timestamp of the activity")
    project: str = Field(..., min_length=1, description="Project name")
    entity: str = Field(..., min_length=1, description="File path or app name")
    type: str = Field(default="file", pattern=r"^(file|app|domain)$", description="Entity type")
    category: str = Field(default="coding", min_length=1, description="Activity category")
    is_write: bool = Field(default=False, description="Whether the entity was saved")
    language: Optional[str] = Field(None, description="Language of the entity")
    plugin: Optional[str] = Field(None, description="Reporting plugin identifier")

    @field_validator("language", "plugin", mode="before")
    @classmethod
    def empty_to_none(cls, v: Any) -> Optional[str]:
        if v == "":
            return None
        return v


class BulkResponse(BaseModel):
    """Bulk endpoint response: one [body, status] pair per heartbeat."""

    model_config = ConfigDict(extra="ignore")

    responses: List[Any] = Field(default_factory=list)

    def statuses(self) -> List[int]:
        """Per-heartbeat status codes, skipping entries that do not carry one."""
        codes = []
        for item in self.responses:
            if isinstance(item, (list, tuple)) and len(item) >= 2 and isinstance(item[1], int):
                codes.append(item[1])
        return codes

    def rejected_count(self) -> int:
        return sum(1 for code in self.statuses() if code >= 400)
