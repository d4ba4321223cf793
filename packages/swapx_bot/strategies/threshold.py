"""
Threshold Strategy - buy below a price, sell above another

Achète `trade_amount` (quote) quand le prix passe sous `buy_threshold`,
vend l'équivalent en base quand il dépasse `sell_threshold`.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from ..exceptions import AlreadyRunningError, ConfigurationError
from ..log_sink import get_logger
from ..models import StrategyKind
from .execution import StrategyConfig, TradeExecutor, TradeStats, to_decimal
from .scheduler import TickScheduler, format_duration


HEARTBEAT_EVERY = 10


@dataclass(kw_only=True)
class ThresholdConfig(StrategyConfig):
    buy_threshold: Decimal = Decimal("0.082")
    sell_threshold: Decimal = Decimal("0.15")
    trade_amount: Decimal = Decimal("1")  # quote per trade
    check_interval: float = 30  # seconds

    def validate(self):
        super().validate()
        if self.buy_threshold <= 0 or self.sell_threshold <= 0:
            raise ConfigurationError("Thresholds must be positive")
        if self.trade_amount <= 0:
            raise ConfigurationError(f"Trade amount must be positive, got {self.trade_amount}")
        if self.check_interval <= 0:
            raise ConfigurationError("Check interval must be positive")

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "buy_threshold": str(self.buy_threshold),
            "sell_threshold": str(self.sell_threshold),
            "trade_amount": str(self.trade_amount),
            "check_interval": self.check_interval,
        })
        return base

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThresholdConfig":
        return cls(
            **cls._common(data),
            buy_threshold=to_decimal(data.get("buy_threshold"), "0.082"),
            sell_threshold=to_decimal(data.get("sell_threshold"), "0.15"),
            trade_amount=to_decimal(data.get("trade_amount"), "1"),
            check_interval=float(data.get("check_interval", 30)),
        )


class ThresholdStrategy:
    """
    Buy/sell on fixed price thresholds.

    Each tick trades in at most one direction; the buy side is checked first.

    Example:
        strategy = ThresholdStrategy(
            {"buy_threshold": "0.08", "sell_threshold": "0.15", "trade_amount": "1"},
            client,
        )
        strategy.start()
    """

    kind = StrategyKind.THRESHOLD

    def __init__(self, config, client, bot_id: Optional[str] = None, storage=None, on_trade=None):
        self.config: ThresholdConfig = (
            config if isinstance(config, ThresholdConfig) else ThresholdConfig.from_dict(config or {})
        )
        self.client = client
        self.bot_id = bot_id or f"threshold-{uuid.uuid4().hex[:8]}"
        self.logger = get_logger("trade", f"threshold.{self.bot_id}")

        self.stats = TradeStats()
        self.ticks = 0
        self._running = False

        self.executor = TradeExecutor(
            client, self.kind, self.bot_id, self.config, self.logger, storage=storage, on_trade=on_trade
        )
        self.scheduler = TickScheduler(
            self.run_tick, self.config.check_interval, self.logger, on_error=self._on_tick_error
        )

    def __repr__(self):
        return f"ThresholdStrategy({self.bot_id}, buy<={self.config.buy_threshold}, sell>={self.config.sell_threshold})"

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def timer(self):
        return self.scheduler.task

    # ==========================================
    # Lifecycle
    # ==========================================

    def start(self):
        if self._running:
            raise AlreadyRunningError(f"{self.bot_id} is already running")
        self.config.validate()

        self._running = True
        self.stats.started_at = datetime.utcnow()
        self.stats.stopped_at = None
        self.ticks = 0

        c = self.config
        self.logger.info(
            f"Threshold strategy started: buy <= {c.buy_threshold}, sell >= {c.sell_threshold}, "
            f"amount {c.trade_amount} {c.quote_token}, every {c.check_interval}s"
        )
        self.scheduler.start(name=f"tick-{self.bot_id}")

    def stop(self, reason: str = "user stop"):
        if not self._running:
            return
        self._running = False
        self.scheduler.stop()
        self.stats.stopped_at = datetime.utcnow()

        s = self.stats
        self.logger.info(
            f"Threshold strategy stopped ({reason}) after {format_duration(s.running_time)}: "
            f"{s.buy_count} buys, {s.sell_count} sells, {s.failed_trades} failed, "
            f"net {s.net_quote} {self.config.quote_token} / {s.net_base} {self.config.base_token}",
            extra={"data": s.to_dict()},
        )

    # ==========================================
    # Tick
    # ==========================================

    async def run_tick(self):
        self.ticks += 1
        c = self.config

        price = await self.client.get_price(c.base_token, c.quote_token)
        self.stats.last_price = price

        if price <= c.buy_threshold:
            self.logger.info(f"Price {price} <= {c.buy_threshold}, buying {c.trade_amount} {c.quote_token}")
            outcome = await self.executor.buy(c.trade_amount, price)
            self.stats.record(outcome)
        elif price >= c.sell_threshold:
            base_amount = c.trade_amount / price
            self.logger.info(f"Price {price} >= {c.sell_threshold}, selling {base_amount} {c.base_token}")
            outcome = await self.executor.sell(base_amount, price)
            self.stats.record(outcome)
        elif self.ticks % HEARTBEAT_EVERY == 1:
            self.logger.info(
                f"Price {price} {c.quote_token}, waiting (buy <= {c.buy_threshold}, sell >= {c.sell_threshold})"
            )

    def _on_tick_error(self, error: Exception):
        self.stats.tick_errors += 1
        self.stats.failed_trades += 1
        self.logger.error(f"Tick failed: {error}")

    def get_status(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "bot_id": self.bot_id,
            "is_running": self.is_running,
            "ticks": self.ticks,
            "config": self.config.to_dict(),
            "stats": self.stats.to_dict(),
        }
