"""
Log Sink - in-memory log channels fed by the logging module

Two channels:
    system  lifecycle events (bots registered, started, stopped)
    trade   prices, fills, failures

Each channel keeps the newest `max_entries` records (FIFO eviction).
With a storage attached, changed channels are written at most once per
`flush_interval`, and on flush(), uninstall() and interpreter exit.
"""

import itertools
import logging
import time
from collections import deque
from datetime import datetime
from typing import Optional, Dict, Any, List


SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

SYSTEM_LOGGER = "swapx_bot.system"
TRADE_LOGGER = "swapx_bot.trade"

CHANNELS = ("system", "trade")
STORAGE_KEYS = {"system": "logs", "trade": "trade_logs"}

MAX_LOGS = 1000
FLUSH_INTERVAL = 2.0  # seconds between storage writes


def get_logger(channel: str = "system", name: Optional[str] = None) -> logging.Logger:
    """Logger for a channel, optionally a named child (e.g. trade.grid)"""
    base = TRADE_LOGGER if channel == "trade" else SYSTEM_LOGGER
    return logging.getLogger(f"{base}.{name}" if name else base)


def log_success(logger: logging.Logger, msg: str, *args, **kwargs):
    """Log at the SUCCESS level"""
    logger.log(SUCCESS, msg, *args, **kwargs)


class LogSink(logging.Handler):
    """
    Logging handler keeping the two channels in bounded deques.

    Example:
        sink = LogSink()
        sink.install()

        get_logger("trade").info("price 0.081", extra={"data": {"price": "0.081"}})
        sink.get_logs("trade")
    """

    def __init__(
        self,
        max_entries: int = MAX_LOGS,
        storage=None,
        level: int = logging.DEBUG,
        flush_interval: float = FLUSH_INTERVAL,
    ):
        super().__init__(level)
        self.max_entries = max_entries
        self.storage = storage
        self.flush_interval = flush_interval
        self._channels: Dict[str, deque] = {c: deque(maxlen=max_entries) for c in CHANNELS}
        self._counter = itertools.count(1)
        self._persisting = False
        self._dirty = set()
        self._last_flush = time.monotonic()

        if storage is not None:
            self._restore()

    def _restore(self):
        last_id = 0
        for channel in CHANNELS:
            for entry in self.storage.load(STORAGE_KEYS[channel], []) or []:
                if isinstance(entry, dict):
                    self._channels[channel].append(entry)
                    last_id = max(last_id, int(entry.get("id") or 0))
        self._counter = itertools.count(last_id + 1)

    # ==========================================
    # Handler
    # ==========================================

    @staticmethod
    def channel_for(logger_name: str) -> str:
        if logger_name == TRADE_LOGGER or logger_name.startswith(TRADE_LOGGER + "."):
            return "trade"
        return "system"

    def emit(self, record: logging.LogRecord):
        try:
            channel = self.channel_for(record.name)
            entry = {
                "id": next(self._counter),
                "timestamp": datetime.fromtimestamp(record.created).isoformat(),
                "level": record.levelname.lower(),
                "channel": channel,
                "logger": record.name,
                "message": record.getMessage(),
                "data": getattr(record, "data", None),
            }
            self._channels[channel].append(entry)
            self._dirty.add(channel)
            if time.monotonic() - self._last_flush >= self.flush_interval:
                self.flush()
        except Exception:
            self.handleError(record)

    def flush(self):
        """Write channels changed since the last flush to storage"""
        # Storage failures are logged, which would re-enter emit()
        if self.storage is None or self._persisting or not self._dirty:
            return
        dirty, self._dirty = self._dirty, set()
        self._persisting = True
        try:
            for channel in CHANNELS:
                if channel in dirty:
                    self.storage.save(STORAGE_KEYS[channel], list(self._channels[channel]))
        finally:
            self._persisting = False
            self._last_flush = time.monotonic()

    def close(self):
        self.flush()
        super().close()

    def install(self) -> "LogSink":
        """Attach to both channel loggers"""
        for name in (SYSTEM_LOGGER, TRADE_LOGGER):
            logger = logging.getLogger(name)
            if self not in logger.handlers:
                logger.addHandler(self)
            if logger.level == logging.NOTSET or logger.level > self.level:
                logger.setLevel(self.level)
        return self

    def uninstall(self):
        self.flush()
        for name in (SYSTEM_LOGGER, TRADE_LOGGER):
            logging.getLogger(name).removeHandler(self)

    # ==========================================
    # Queries
    # ==========================================

    def get_logs(self, channel: str = "system") -> List[Dict[str, Any]]:
        """Entries oldest first; channel 'all' merges both"""
        if channel == "all":
            merged = list(self._channels["system"]) + list(self._channels["trade"])
            return sorted(merged, key=lambda e: e["id"])
        return list(self._channels[channel])

    def by_level(self, level: str, channel: str = "all") -> List[Dict[str, Any]]:
        level = level.lower()
        return [e for e in self.get_logs(channel) if e["level"] == level]

    def search(self, text: str, channel: str = "all") -> List[Dict[str, Any]]:
        needle = text.lower()
        return [e for e in self.get_logs(channel) if needle in e["message"].lower()]

    def clear(self, channel: str = "all"):
        channels = CHANNELS if channel == "all" else (channel,)
        for c in channels:
            self._channels[c].clear()
            self._dirty.add(c)
        self.flush()

    def export_text(self, channel: str = "all") -> str:
        lines = []
        for e in self.get_logs(channel):
            lines.append(f"[{e['timestamp']}] [{e['channel']}] [{e['level'].upper()}] {e['message']}")
        return "\n".join(lines)

    def count(self, channel: str = "all") -> int:
        return len(self.get_logs(channel))


_sink_instance: Optional[LogSink] = None


def install_log_sink(max_entries: int = MAX_LOGS, storage=None, level: int = logging.DEBUG) -> LogSink:
    """Process-wide sink, created once"""
    global _sink_instance
    if _sink_instance is None:
        _sink_instance = LogSink(max_entries=max_entries, storage=storage, level=level).install()
    return _sink_instance
