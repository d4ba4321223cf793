"""
Strategy Runner - process-wide registry of live strategies

Strategies live here, not in whatever view started them, so they keep
running until explicitly stopped. `cleanup_all()` is only meant for process
teardown.
"""

import asyncio
import atexit
import logging
from typing import Optional, Dict, List, Tuple, Union

from .strategies.scheduler import Strategy


logger = logging.getLogger("swapx_bot.system.runner")

TimerHandle = Union[asyncio.Task, asyncio.TimerHandle, asyncio.Handle]


class _Entry:
    __slots__ = ("strategy", "timer")

    def __init__(self, strategy: Strategy):
        self.strategy = strategy
        self.timer: Optional[TimerHandle] = None


def _timer_alive(timer: Optional[TimerHandle]) -> bool:
    if timer is None:
        return False
    if isinstance(timer, asyncio.Future):
        return not timer.done()
    return not timer.cancelled()


class StrategyRunner:
    """
    Registre des stratégies actives, indexé par bot id.

    Example:
        runner = get_runner()
        runner.register(bot.id, strategy)
        runner.start(bot.id)
        ...
        runner.stop(bot.id, "user stop")
    """

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}

    def __len__(self):
        return len(self._entries)

    def __contains__(self, bot_id: str) -> bool:
        return bot_id in self._entries

    def register(self, bot_id: str, strategy: Strategy):
        """Store a strategy; replaces any previous entry silently"""
        self._entries[bot_id] = _Entry(strategy)
        logger.info(
            f"Strategy registered: {bot_id} ({strategy.kind.value})",
            extra={"data": {"bot_id": bot_id, "kind": strategy.kind.value}},
        )

    def register_timer(self, bot_id: str, timer: TimerHandle):
        """Attach the stats timer of a bot"""
        entry = self._entries.get(bot_id)
        if entry is None:
            logger.warning(f"Timer for unknown bot {bot_id} ignored")
            if isinstance(timer, asyncio.Future):
                timer.cancel()
            return
        entry.timer = timer

    def get(self, bot_id: str) -> Optional[Strategy]:
        entry = self._entries.get(bot_id)
        return entry.strategy if entry else None

    def start(self, bot_id: str) -> bool:
        """
        Start a registered strategy (non-blocking).

        Returns False for an unknown id. If the strategy refuses to start,
        it is removed from the registry and the error is re-raised.
        """
        entry = self._entries.get(bot_id)
        if entry is None:
            logger.error(f"Cannot start {bot_id}: not registered")
            return False

        try:
            entry.strategy.start()
        except Exception as e:
            self._entries.pop(bot_id, None)
            self._cancel_timer(entry)
            logger.error(f"Strategy {bot_id} failed to start: {e}", extra={"data": {"bot_id": bot_id}})
            raise

        logger.info(f"Strategy started: {bot_id}")
        return True

    def stop(self, bot_id: str, reason: str = "user stop"):
        """Stop and forget a strategy. Unknown ids are ignored."""
        entry = self._entries.pop(bot_id, None)
        if entry is None:
            return

        try:
            entry.strategy.stop(reason)
        finally:
            self._cancel_timer(entry)
        logger.info(f"Strategy stopped: {bot_id} ({reason})", extra={"data": {"bot_id": bot_id, "reason": reason}})

    @staticmethod
    def _cancel_timer(entry: _Entry):
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None

    def is_running(self, bot_id: str) -> bool:
        """Running only if the strategy says so AND its timer is still alive"""
        entry = self._entries.get(bot_id)
        if entry is None:
            return False
        strategy = entry.strategy
        return bool(strategy.is_running) and _timer_alive(strategy.timer)

    def running(self) -> List[Tuple[str, Strategy]]:
        return [(bot_id, e.strategy) for bot_id, e in self._entries.items() if self.is_running(bot_id)]

    def bot_ids(self) -> List[str]:
        return list(self._entries)

    def cleanup_all(self, reason: str = "shutdown"):
        """Stop every strategy. Process teardown only."""
        if not self._entries:
            return
        logger.warning(f"Stopping all {len(self._entries)} strategies ({reason})")
        for bot_id in list(self._entries):
            try:
                self.stop(bot_id, reason)
            except Exception as e:
                logger.error(f"Error stopping {bot_id}: {e}")


_runner_instance: Optional[StrategyRunner] = None


def get_runner() -> StrategyRunner:
    """Process-wide runner, created once, cleaned up at interpreter exit"""
    global _runner_instance
    if _runner_instance is None:
        _runner_instance = StrategyRunner()
        atexit.register(_runner_instance.cleanup_all, "process exit")
    return _runner_instance
