from .base import AgentRegistry, ExecutionOptions, Provider, ProviderExecutor
from .mock import MockProvider
from .registry import ProviderRegistry, StaticAgentRegistry

__all__ = [
    "AgentRegistry",
    "ExecutionOptions",
    "MockProvider",
    "Provider",
    "ProviderExecutor",
    "ProviderRegistry",
    "StaticAgentRegistry",
]
