"""
DCA Strategy - Dollar Cost Averaging

Achète un montant fixe à chaque intervalle jusqu'à épuisement du budget.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from ..exceptions import AlreadyRunningError, ConfigurationError
from ..log_sink import get_logger, log_success
from ..models import StrategyKind
from .execution import StrategyConfig, TradeExecutor, TradeStats, to_decimal
from .scheduler import TickScheduler, format_duration


@dataclass(kw_only=True)
class DCAConfig(StrategyConfig):
    """
    Dollar Cost Average Configuration

    `total_spent` / `executed_times` let a restarted bot resume its counters.
    """
    amount: Decimal = Decimal("100")  # quote per buy
    interval: float = 3600  # seconds
    total_budget: Decimal = Decimal("1000")
    max_price: Optional[Decimal] = None
    total_times: Optional[int] = None

    # Tracking (restorable)
    total_spent: Decimal = Decimal("0")
    executed_times: int = 0

    def validate(self):
        super().validate()
        if self.amount <= 0:
            raise ConfigurationError(f"DCA amount must be positive, got {self.amount}")
        if self.total_budget <= 0:
            raise ConfigurationError("Total budget must be positive")
        if self.interval <= 0:
            raise ConfigurationError("Interval must be positive")
        if self.total_times is not None and self.total_times < 1:
            raise ConfigurationError("total_times must be at least 1")

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "amount": str(self.amount),
            "interval": self.interval,
            "total_budget": str(self.total_budget),
            "max_price": str(self.max_price) if self.max_price is not None else None,
            "total_times": self.total_times,
            "total_spent": str(self.total_spent),
            "executed_times": self.executed_times,
        })
        return base

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DCAConfig":
        total_times = data.get("total_times")
        return cls(
            **cls._common(data),
            amount=to_decimal(data.get("amount"), "100"),
            interval=float(data.get("interval", 3600)),
            total_budget=to_decimal(data.get("total_budget"), "1000"),
            max_price=to_decimal(data.get("max_price")),
            total_times=int(total_times) if total_times else None,
            total_spent=to_decimal(data.get("total_spent"), "0"),
            executed_times=int(data.get("executed_times", 0)),
        )


class DCAStrategy:
    """
    Dollar Cost Average Strategy

    Invariant: total_spent never exceeds total_budget. Accounting is nominal
    (the configured amount), not the filled amount.

    Example:
        strategy = DCAStrategy({"amount": "10", "interval": 3600, "total_budget": "100"}, client)
        strategy.start()
    """

    kind = StrategyKind.DCA

    def __init__(self, config, client, bot_id: Optional[str] = None, storage=None, on_trade=None):
        self.config: DCAConfig = config if isinstance(config, DCAConfig) else DCAConfig.from_dict(config or {})
        self.client = client
        self.bot_id = bot_id or f"dca-{uuid.uuid4().hex[:8]}"
        self.logger = get_logger("trade", f"dca.{self.bot_id}")

        self.stats = TradeStats()
        self.total_acquired = Decimal("0")
        self.completed_reason: Optional[str] = None
        self._running = False

        self.executor = TradeExecutor(
            client, self.kind, self.bot_id, self.config, self.logger, storage=storage, on_trade=on_trade
        )
        self.scheduler = TickScheduler(
            self.run_tick, self.config.interval, self.logger, on_error=self._on_tick_error
        )

    def __repr__(self):
        return f"DCAStrategy({self.bot_id}, {self.config.total_spent}/{self.config.total_budget})"

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def timer(self):
        return self.scheduler.task

    @property
    def total_spent(self) -> Decimal:
        return self.config.total_spent

    @property
    def executed_times(self) -> int:
        return self.config.executed_times

    @property
    def average_price(self) -> Decimal:
        if self.total_acquired <= 0:
            return Decimal("0")
        return self.config.total_spent / self.total_acquired

    @property
    def progress(self) -> float:
        return float(self.config.total_spent / self.config.total_budget * 100)

    # ==========================================
    # Lifecycle
    # ==========================================

    def start(self):
        if self._running:
            raise AlreadyRunningError(f"{self.bot_id} is already running")
        self.config.validate()

        self._running = True
        self.completed_reason = None
        self.stats.started_at = datetime.utcnow()
        self.stats.stopped_at = None

        c = self.config
        self.logger.info(
            f"DCA started: {c.amount} {c.quote_token} every {format_duration(c.interval)}, "
            f"budget {c.total_budget} (spent {c.total_spent})"
            + (f", max price {c.max_price}" if c.max_price is not None else "")
        )
        self.scheduler.start(name=f"tick-{self.bot_id}")

    def stop(self, reason: str = "user stop"):
        if not self._running:
            return
        self._running = False
        self.scheduler.stop()
        self.stats.stopped_at = datetime.utcnow()

        c = self.config
        self.logger.info(
            f"DCA stopped ({reason}) after {format_duration(self.stats.running_time)}: "
            f"{c.executed_times} buys, spent {c.total_spent}/{c.total_budget} {c.quote_token}, "
            f"acquired {self.total_acquired} {c.base_token}",
            extra={"data": self.get_status()},
        )

    def reset(self):
        """Stop and clear counters"""
        self.stop("reset")
        self.config.total_spent = Decimal("0")
        self.config.executed_times = 0
        self.total_acquired = Decimal("0")
        self.completed_reason = None
        self.stats = TradeStats()

    def _complete(self, reason: str):
        self.completed_reason = reason
        log_success(
            self.logger,
            f"DCA complete: {reason} ({self.config.executed_times} buys, spent {self.config.total_spent})",
        )
        self.stop(reason)

    # ==========================================
    # Tick
    # ==========================================

    async def run_tick(self):
        c = self.config

        if c.total_times is not None and c.executed_times >= c.total_times:
            self._complete("target reached")
            return
        if c.total_spent + c.amount > c.total_budget:
            self._complete("budget exhausted")
            return

        price = await self.client.get_price(c.base_token, c.quote_token)
        self.stats.last_price = price

        if c.max_price is not None and price > c.max_price:
            self.logger.info(f"Price {price} above max {c.max_price}, skipping this buy")
            return

        self.logger.info(f"DCA buy #{c.executed_times + 1}: {c.amount} {c.quote_token} @ {price}")
        outcome = await self.executor.buy(c.amount, price)
        self.stats.record(outcome)

        if outcome.success:
            c.executed_times += 1
            c.total_spent += c.amount
            self.total_acquired += outcome.record.amount_out or Decimal("0")

    def _on_tick_error(self, error: Exception):
        self.stats.tick_errors += 1
        self.stats.failed_trades += 1
        self.logger.error(f"Tick failed: {error}")

    def get_status(self) -> Dict[str, Any]:
        c = self.config
        return {
            "kind": self.kind.value,
            "bot_id": self.bot_id,
            "is_running": self.is_running,
            "executed_times": c.executed_times,
            "total_times": c.total_times,
            "total_spent": str(c.total_spent),
            "total_budget": str(c.total_budget),
            "total_acquired": str(self.total_acquired),
            "average_price": str(self.average_price),
            "progress": round(self.progress, 2),
            "completed_reason": self.completed_reason,
            "config": c.to_dict(),
            "stats": self.stats.to_dict(),
        }
