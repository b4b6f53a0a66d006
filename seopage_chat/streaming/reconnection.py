import asyncio
from typing import Awaitable, Callable, Optional
from datetime import datetime
import logging

from ..models.connection import ReconnectPolicy

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class ReconnectScheduler:
    """Bounded exponential backoff for one session.

    At most one reconnect timer is pending at a time. ``attempt`` counts the
    reconnects scheduled since the last successful open or ``reset()``.
    """

    def __init__(self, policy: ReconnectPolicy, sleep: Sleep = asyncio.sleep):
        self.policy = policy
        self._sleep = sleep
        self.attempt = 0
        self.last_attempt: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.policy.max_attempts

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, callback: Callable[[], None], label: str = "") -> Optional[int]:
        """Arm the next reconnect; returns its delay in ms, or None when exhausted."""
        if self.exhausted:
            return None

        self.cancel()
        self.attempt += 1
        self.last_attempt = datetime.now()
        delay_ms = self.policy.delay_for(self.attempt)

        logger.info(f"Attempting reconnection {self.attempt}/{self.policy.max_attempts} "
                    f"for {label} in {delay_ms / 1000:.1f}s")

        self._task = asyncio.create_task(self._fire_after(delay_ms, callback))
        return delay_ms

    async def _fire_after(self, delay_ms: int, callback: Callable[[], None]) -> None:
        await self._sleep(delay_ms / 1000)
        self._task = None
        callback()

    def cancel(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def reset(self) -> None:
        self.attempt = 0
