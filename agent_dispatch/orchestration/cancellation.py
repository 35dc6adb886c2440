from __future__ import annotations

import asyncio

from ..core.exceptions import TaskCancelledError


class CancellationToken:
    """Cooperative cancellation signal handed to every task body.

    The scheduler cancels the token when a task times out or when the batch is aborted.
    Bodies poll ``cancelled`` or await ``wait()`` and stop at the next safe point. The first
    reason supplied wins; later calls to ``cancel`` are no-ops.
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        return True

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TaskCancelledError(self._reason)

    async def wait(self) -> str | None:
        await self._event.wait()
        return self._reason

    def __repr__(self) -> str:
        state = f"cancelled reason={self._reason!r}" if self.cancelled else "active"
        return f"<CancellationToken {state}>"


__all__ = ["CancellationToken"]
