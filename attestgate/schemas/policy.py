"""Policy publication schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PolicyPublishRequest(BaseModel):
    """Body for POST /internal/policies: a policy document as loaded from YAML."""

    model_config = ConfigDict(extra="forbid")

    document: dict[str, Any]
    activated_by: str | None = Field(None, max_length=255)


class PolicyRead(BaseModel):
    """Read DTO for one published policy version."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    version: str
    checksum: str
    document: dict[str, Any]
    activated_by: str | None = None
    activated_at: datetime
