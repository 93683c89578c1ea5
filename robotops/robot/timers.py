import asyncio
from typing import Awaitable, Callable, Optional

from robotops.robot.errors import RunCancelled

Sleeper = Callable[[float], Awaitable[None]]


class CancellableTimer:
    """Suspends a run between cycles; a stop request wakes it up immediately.

    Task cancellation also interrupts the wait, since both paths end in an
    awaited coroutine.
    """

    def __init__(self, stop_event: Optional[asyncio.Event] = None, sleep: Optional[Sleeper] = None):
        self.stop_event = stop_event or asyncio.Event()
        self._sleep = sleep

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set()

    def cancel(self) -> None:
        self.stop_event.set()

    def check(self) -> None:
        if self.cancelled:
            raise RunCancelled("Run cancelled")

    async def wait(self, seconds: float) -> None:
        self.check()
        if seconds <= 0:
            return
        if self._sleep is not None:
            await self._sleep(seconds)
        else:
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass
        self.check()
