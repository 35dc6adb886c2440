from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from ..core.exceptions import TaskExecutionError
from ..orchestration.permissions import ModePermissions
from ..schemas.providers import ProviderResponse
from .base import ExecutionOptions


@dataclass(slots=True)
class ProviderCall:
    prompt: str
    mode: str
    permissions: ModePermissions
    agent_id: str
    model: str | None


class MockProvider:
    """In-process provider that returns canned responses.

    Useful as a development default and in tests. Prompt-specific responses take precedence over
    the default one. ``delay`` simulates a slow provider and honours the cancellation token, so a
    timed out call stops promptly.
    """

    def __init__(
        self,
        name: str = "mock",
        *,
        available: bool = True,
        delay: float = 0.0,
        default_model: str | None = None,
        raise_error: str | None = None,
    ) -> None:
        self.name = name
        self.available = available
        self.delay = delay
        self.default_model = default_model
        self.raise_error = raise_error
        self.calls: list[ProviderCall] = []
        self.probe_count = 0
        self._responses: dict[str, ProviderResponse] = {}

    def set_response(self, prompt: str, **fields: Any) -> None:
        self._responses[prompt] = ProviderResponse(**{"success": True, "provider": self.name, **fields})

    async def is_available(self) -> bool:
        self.probe_count += 1
        return self.available

    async def execute(
        self,
        prompt: str,
        *,
        mode: str,
        permissions: ModePermissions,
        options: ExecutionOptions,
    ) -> ProviderResponse:
        model = options.model or self.default_model
        self.calls.append(
            ProviderCall(
                prompt=prompt,
                mode=mode,
                permissions=permissions,
                agent_id=options.agent_id,
                model=model,
            )
        )
        if self.delay > 0:
            try:
                await asyncio.wait_for(options.cancellation.wait(), timeout=self.delay)
            except asyncio.TimeoutError:
                pass
        options.cancellation.raise_if_cancelled()

        if self.raise_error is not None:
            raise TaskExecutionError(self.raise_error)

        custom = self._responses.get(prompt)
        if custom is not None:
            return custom.model_copy(update={"model": model})
        return ProviderResponse(success=True, content=f"Mock response for: {prompt}", provider=self.name, model=model)


__all__ = ["MockProvider", "ProviderCall"]
