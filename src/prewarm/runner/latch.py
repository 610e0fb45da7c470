"""
Completion Latch

Single-assignment cell recording the outcome of one warmup task.
"""

import asyncio
import threading
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class CompletionLatch(Generic[T]):
    """
    Settle-once cell shared by a task's completion path and its timer.

    The first call to settle() wins; later calls are ignored and return
    False. settle() may be called from the event loop or from worker
    threads, waiters are always woken on the loop the latch was created on.

    Example:
        latch = CompletionLatch()
        loop.call_later(0.5, latch.settle, "timeout")
        ...
        latch.settle("done")  # False if the timer already fired
        outcome = await latch.wait()
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()
        self._lock = threading.Lock()
        self._settled = False
        self._value: Optional[T] = None
        self._waiter: asyncio.Future = self._loop.create_future()

    @property
    def settled(self) -> bool:
        return self._settled

    @property
    def value(self) -> Optional[T]:
        """The winning value (None until settled)"""
        return self._value

    def settle(self, value: T) -> bool:
        """
        Record a value if none has been recorded yet.

        Args:
            value: Outcome to record

        Returns:
            True if this call settled the latch
        """
        with self._lock:
            if self._settled:
                return False
            self._settled = True
            self._value = value

        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._wake, value)
        return True

    async def wait(self) -> T:
        """Wait for the latch to settle and return the winning value"""
        return await asyncio.shield(self._waiter)

    def _wake(self, value: Any) -> None:
        if not self._waiter.done():
            self._waiter.set_result(value)
