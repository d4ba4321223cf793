"""
Storage - JSON key-value persistence on SQLite

Holds bots, trade history, log channels and app settings.
Failures are logged and reported through return values, never raised.

Example:
    storage = Storage("/tmp/swapx.db")
    storage.save("config", {"slippage": "0.5"})
    storage.load("config", {})

    storage.save_trade(record)
    storage.trade_stats()
"""

import json
import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any, List

from .models import TradeRecord


logger = logging.getLogger("swapx_bot.system.storage")

KEY_BOTS = "bots"
KEY_TRADES = "trades"
KEY_CONFIG = "config"
KEY_WALLET = "wallet"

MAX_TRADES = 5000


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default)


class Storage:
    """
    Key-value store: one row per key, value stored as JSON text.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._memory_conn: Optional[sqlite3.Connection] = None

        if db_path == ":memory:":
            # A fresh in-memory database per connection would lose everything
            self._memory_conn = sqlite3.connect(":memory:")
        else:
            directory = os.path.dirname(db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Context manager for database connections"""
        if self._memory_conn is not None:
            conn = self._memory_conn
        else:
            conn = sqlite3.connect(self.db_path)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if conn is not self._memory_conn:
                conn.close()

    def _init_db(self):
        with self._get_connection() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

    def close(self):
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None

    # ==========================================
    # Key-value
    # ==========================================

    def save(self, key: str, value: Any) -> bool:
        try:
            payload = dumps(value)
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, payload, datetime.utcnow().isoformat()),
                )
            return True
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Save failed for '{key}': {e}")
            return False

    def load(self, key: str, default: Any = None) -> Any:
        try:
            with self._get_connection() as conn:
                row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
            if row is None:
                return default
            return json.loads(row[0])
        except (sqlite3.Error, ValueError) as e:
            logger.error(f"Load failed for '{key}': {e}")
            return default

    def remove(self, key: str) -> bool:
        try:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            return True
        except sqlite3.Error as e:
            logger.error(f"Remove failed for '{key}': {e}")
            return False

    def clear_all(self) -> bool:
        try:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM kv_store")
            return True
        except sqlite3.Error as e:
            logger.error(f"Clear failed: {e}")
            return False

    def keys(self) -> List[str]:
        try:
            with self._get_connection() as conn:
                return [row[0] for row in conn.execute("SELECT key FROM kv_store ORDER BY key")]
        except sqlite3.Error as e:
            logger.error(f"Listing keys failed: {e}")
            return []

    # ==========================================
    # Bots
    # ==========================================

    def get_bots(self) -> List[Dict[str, Any]]:
        return self.load(KEY_BOTS, []) or []

    def save_bots(self, bots: List[Dict[str, Any]]) -> bool:
        return self.save(KEY_BOTS, bots)

    def save_bot(self, bot: Dict[str, Any]) -> bool:
        """Insert or replace one bot by id"""
        bots = self.get_bots()
        for i, existing in enumerate(bots):
            if existing.get("id") == bot["id"]:
                bots[i] = bot
                break
        else:
            bots.append(bot)
        return self.save_bots(bots)

    def remove_bot(self, bot_id: str) -> bool:
        bots = [b for b in self.get_bots() if b.get("id") != bot_id]
        return self.save_bots(bots)

    # ==========================================
    # Trades
    # ==========================================

    def save_trade(self, trade) -> bool:
        """Append a trade (TradeRecord or dict) to the history"""
        if isinstance(trade, TradeRecord):
            data = trade.to_dict()
        else:
            data = dict(trade)
            data.setdefault("id", uuid.uuid4().hex[:12])
            data.setdefault("timestamp", datetime.utcnow().isoformat())

        trades = self.load(KEY_TRADES, []) or []
        trades.append(data)
        if len(trades) > MAX_TRADES:
            trades = trades[-MAX_TRADES:]
        return self.save(KEY_TRADES, trades)

    def get_trades(
        self,
        bot_id: Optional[str] = None,
        source: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Trades newest first, optionally filtered"""
        trades = list(reversed(self.load(KEY_TRADES, []) or []))
        if bot_id is not None:
            trades = [t for t in trades if t.get("bot_id") == bot_id]
        if source is not None:
            trades = [t for t in trades if t.get("source") == source]
        if status is not None:
            trades = [t for t in trades if t.get("status") == status]
        if limit is not None:
            trades = trades[:limit]
        return trades

    def clear_trades(self) -> bool:
        return self.save(KEY_TRADES, [])

    def export_trades(self, path: str) -> int:
        """Write the trade history to a JSON file, returns the count"""
        trades = self.load(KEY_TRADES, []) or []
        with open(path, "w") as f:
            json.dump(
                {"exported_at": datetime.utcnow().isoformat(), "trades": trades},
                f,
                indent=2,
                default=_json_default,
            )
        return len(trades)

    def trade_stats(self, bot_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Aggregate statistics over the trade history

        Returns:
            Dict with counts, volumes (quote) and realized profit
        """
        trades = self.get_trades(bot_id=bot_id)
        successful = [t for t in trades if t.get("status") == "success"]

        buy_volume = Decimal("0")
        sell_volume = Decimal("0")
        buys = sells = 0
        for t in successful:
            if t.get("type") == "BUY":
                buys += 1
                buy_volume += Decimal(t.get("amount_in") or "0")
            else:
                sells += 1
                sell_volume += Decimal(t.get("amount_out") or "0")

        return {
            "total_trades": len(trades),
            "successful_trades": len(successful),
            "failed_trades": len(trades) - len(successful),
            "buy_count": buys,
            "sell_count": sells,
            "buy_volume": buy_volume,
            "sell_volume": sell_volume,
            "net_profit": sell_volume - buy_volume,
            "success_rate": (len(successful) / len(trades) * 100) if trades else 0,
        }

    # ==========================================
    # Settings
    # ==========================================

    def get_app_settings(self) -> Dict[str, Any]:
        return self.load(KEY_CONFIG, {}) or {}

    def save_app_settings(self, settings: Dict[str, Any]) -> bool:
        return self.save(KEY_CONFIG, settings)
