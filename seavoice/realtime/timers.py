"""
State-owned timers.

Every timer firing carries the state generation it was scheduled in and a
per-timer serial. The controller compares both on delivery, so a timer that
fires after a state change (or after being restarted) is a detectable no-op.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

from seavoice.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TimerFired:
    """Delivered to the controller queue when a timer expires."""
    name: str
    generation: int
    serial: int


class GenerationTimer:
    """
    Cancellable one-shot timer.

    Usage:
        timer = GenerationTimer("silence", queue.put_nowait)
        timer.start(1.5, generation=state_generation)
        ...
        if timer.is_current(fired, state_generation):
            handle_expiry()
    """

    def __init__(self, name: str, post: Callable[[TimerFired], None]):
        self.name = name
        self._post = post
        self._task: Optional[asyncio.Task] = None
        self._serial = 0
        self._generation: Optional[int] = None

    def start(self, delay_s: float, generation: int) -> None:
        """(Re)start the timer, invalidating any earlier scheduling."""
        self.cancel()
        self._serial += 1
        self._generation = generation
        fired = TimerFired(self.name, generation, self._serial)
        self._task = asyncio.create_task(self._run(delay_s, fired))

    async def _run(self, delay_s: float, fired: TimerFired) -> None:
        try:
            await asyncio.sleep(delay_s)
        except asyncio.CancelledError:
            return
        self._post(fired)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._generation = None

    def is_current(self, fired: TimerFired, generation: int) -> bool:
        """True if the firing matches the live scheduling and state generation."""
        current = (
            fired.name == self.name
            and fired.serial == self._serial
            and fired.generation == self._generation == generation
        )
        if not current:
            logger.debug(
                f"Stale {fired.name} timer ignored "
                f"(generation {fired.generation}, now {generation})"
            )
        return current

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()
