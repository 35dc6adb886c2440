from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AgentDefinition(BaseModel):
    """Registry entry describing one addressable agent."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    provider: str | list[str] | None = None
    working_directory: str | None = Field(default=None, alias="workingDirectory")
    model: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def _strip_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("agent id must not be blank")
        return value

    @field_validator("provider")
    @classmethod
    def _clean_provider(cls, value: str | list[str] | None) -> str | list[str] | None:
        if value is None:
            return None
        if isinstance(value, str):
            return value.strip() or None
        cleaned = [name.strip() for name in value if name and name.strip()]
        return cleaned or None

    def provider_spec(self, provider_names: set[str] | frozenset[str] | None = None) -> str | list[str] | None:
        """Return the agent's provider spec.

        An agent without an explicit provider whose id names a known provider maps to that
        provider, so ``@claude`` reaches the ``claude`` provider directly.
        """
        if self.provider is not None:
            return self.provider
        if provider_names and self.id in provider_names:
            return self.id
        return None


__all__ = ["AgentDefinition"]
