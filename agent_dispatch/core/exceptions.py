from __future__ import annotations

from typing import Sequence


class DispatchError(RuntimeError):
    """Base class for dispatcher failures."""


class PermissionValidationError(DispatchError):
    """Raised when a provider permission configuration is malformed."""


class ProviderResolutionError(DispatchError):
    """Raised when no candidate provider in a fallback chain is available."""

    def __init__(self, tried: Sequence[str]) -> None:
        self.tried = tuple(tried)
        if self.tried:
            message = f"No provider available (tried: {', '.join(self.tried)})"
        else:
            message = "No provider available (no candidates configured)"
        super().__init__(message)


class ProviderNotFoundError(DispatchError):
    """Raised when a provider name is not registered."""


class TaskExecutionError(DispatchError):
    """Raised when the external provider call itself fails."""


class TaskTimeoutError(TaskExecutionError):
    """Raised when a scheduled task exceeds its timeout."""

    def __init__(self, task_id: str, timeout_ms: int) -> None:
        self.task_id = task_id
        self.timeout_ms = timeout_ms
        super().__init__(f"Task {task_id} timed out after {timeout_ms}ms")


class TaskCancelledError(TaskExecutionError):
    """Raised when a task observes its cancellation token."""

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason or "cancelled"
        super().__init__(f"Task cancelled: {self.reason}")
