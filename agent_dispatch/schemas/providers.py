from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ProviderResponse(BaseModel):
    success: bool
    content: str = ""
    error: str | None = None
    provider: str | None = None
    model: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


__all__ = ["ProviderResponse"]
