"""
Tick scheduling shared by the strategies

Each strategy owns one TickScheduler: an asyncio task that fires a tick
immediately, then every `interval` seconds. Ticks run as their own tasks so
the timer keeps its cadence while a tick waits on the network. A tick that
fires while the previous one is still in flight is skipped.
"""

import asyncio
import logging
from typing import Optional, Dict, Any, Callable, Awaitable, Protocol, runtime_checkable

from ..models import StrategyKind


@runtime_checkable
class Strategy(Protocol):
    """Contrat commun des stratégies (dispatch par `kind`)"""

    kind: StrategyKind
    bot_id: str

    @property
    def is_running(self) -> bool: ...

    @property
    def timer(self) -> Optional[asyncio.Task]: ...

    def start(self) -> None: ...

    def stop(self, reason: str = "user stop") -> None: ...

    async def run_tick(self) -> None: ...

    def get_status(self) -> Dict[str, Any]: ...


def format_duration(seconds: float) -> str:
    """12h 3m 4s"""
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class TickScheduler:
    """
    Recurring timer with a skip-if-busy guard.

    stop() cancels the timer only. A tick already in flight finishes (or
    fails) on its own.
    """

    def __init__(
        self,
        tick: Callable[[], Awaitable[None]],
        interval: float,
        logger: logging.Logger,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self._tick = tick
        self.interval = interval
        self.logger = logger
        self._on_error = on_error

        self._task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None
        self._busy = False

        self.ticks_fired = 0
        self.ticks_skipped = 0

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def busy(self) -> bool:
        return self._busy

    def start(self, name: Optional[str] = None) -> asyncio.Task:
        """Must be called from inside a running event loop"""
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name=name)
        return self._task

    def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self):
        while True:
            self.dispatch()
            await asyncio.sleep(self.interval)

    def dispatch(self) -> Optional[asyncio.Task]:
        """Fire one tick unless the previous one is still running"""
        if self._busy:
            self.ticks_skipped += 1
            self.logger.debug("Previous tick still in flight, skipping")
            return None

        self._busy = True
        self.ticks_fired += 1
        self._current = asyncio.get_running_loop().create_task(self._guarded())
        return self._current

    async def _guarded(self):
        try:
            await self._tick()
        except Exception as e:
            if self._on_error is not None:
                self._on_error(e)
            else:
                self.logger.error(f"Tick failed: {e}")
        finally:
            self._busy = False

    async def wait_idle(self):
        """Await the in-flight tick, if any"""
        current = self._current
        if current is not None and not current.done():
            await asyncio.shield(current)
