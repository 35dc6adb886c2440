from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence

import structlog

from ..core.logging import get_logger
from ..orchestration.cancellation import CancellationToken
from ..orchestration.permissions import ModePermissions
from ..orchestration.resolver import AvailabilityProbe
from ..schemas.agents import AgentDefinition
from ..schemas.providers import ProviderResponse


@dataclass(slots=True)
class ExecutionOptions:
    """Per-call context handed to a provider alongside the prompt."""

    agent_id: str
    model: str | None = None
    working_directory: str | None = None
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    logger: structlog.stdlib.BoundLogger = field(default_factory=lambda: get_logger(name="agent_dispatch.provider"))


class Provider(Protocol):
    name: str

    async def is_available(self) -> bool:
        ...

    async def execute(
        self,
        prompt: str,
        *,
        mode: str,
        permissions: ModePermissions,
        options: ExecutionOptions,
    ) -> ProviderResponse:
        ...


class ProviderExecutor(Protocol):
    async def execute(
        self,
        provider_name: str,
        prompt: str,
        mode: str,
        permissions: ModePermissions,
        options: ExecutionOptions,
    ) -> ProviderResponse:
        ...


class AgentRegistry(Protocol):
    def list_agents(self) -> Sequence[AgentDefinition]:
        ...


__all__ = [
    "AgentRegistry",
    "AvailabilityProbe",
    "ExecutionOptions",
    "Provider",
    "ProviderExecutor",
]
