import asyncio
from typing import Callable, List, Optional


class OperationCancelled(Exception):
    """Raised at a checkpoint once the owning token has been cancelled."""
    pass


class CancellationToken:
    """
    Cooperative abort signal shared by everything one relay session runs.

    Callbacks registered with `on_cancel` fire once, synchronously, when the token
    is cancelled; tasks register their own `cancel` so in-flight awaits observe it.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._callbacks: List[Callable[[], object]] = []
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], object]) -> None:
        if self.cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleeps up to `seconds`; returns True if the token was cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
