from __future__ import annotations

import inspect
from typing import Iterable, Mapping, Sequence

from ..core.exceptions import ProviderNotFoundError
from ..core.logging import get_logger
from ..orchestration.permissions import ModePermissions
from ..schemas.agents import AgentDefinition
from ..schemas.providers import ProviderResponse
from .base import ExecutionOptions, Provider

logger = get_logger(name=__name__)


class ProviderRegistry:
    """Name-indexed provider collection.

    Serves both as the availability probe and as the execution collaborator, dispatching each
    call to the provider registered under the requested name.
    """

    def __init__(self, providers: Iterable[Provider] = ()) -> None:
        self._providers: dict[str, Provider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: Provider, *, replace: bool = False) -> None:
        if provider.name in self._providers and not replace:
            raise ValueError(f"Provider '{provider.name}' is already registered")
        self._providers[provider.name] = provider

    def get(self, name: str) -> Provider:
        try:
            return self._providers[name]
        except KeyError as exc:
            raise ProviderNotFoundError(f"Provider '{name}' is not registered") from exc

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    async def is_available(self, name: str) -> bool:
        provider = self._providers.get(name)
        if provider is None:
            return False
        outcome = provider.is_available()
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return bool(outcome)

    async def execute(
        self,
        provider_name: str,
        prompt: str,
        mode: str,
        permissions: ModePermissions,
        options: ExecutionOptions,
    ) -> ProviderResponse:
        provider = self.get(provider_name)
        options.logger.debug("provider_execute", provider=provider_name, mode=mode, model=options.model)
        return await provider.execute(prompt, mode=mode, permissions=permissions, options=options)


class StaticAgentRegistry:
    """Agent registry over a fixed list of definitions."""

    def __init__(self, agents: Iterable[AgentDefinition | Mapping[str, object]] = ()) -> None:
        self._agents: list[AgentDefinition] = []
        for agent in agents:
            definition = agent if isinstance(agent, AgentDefinition) else AgentDefinition.model_validate(agent)
            if any(existing.id == definition.id for existing in self._agents):
                logger.warning("agent_definition_duplicate", agent=definition.id)
                continue
            self._agents.append(definition)

    def list_agents(self) -> Sequence[AgentDefinition]:
        return tuple(self._agents)


__all__ = ["ProviderRegistry", "StaticAgentRegistry"]
