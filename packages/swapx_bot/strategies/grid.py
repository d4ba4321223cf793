"""
Grid Trading Strategy

Place des niveaux entre lower_price et upper_price. Chaque niveau est un
échelon d'achat; sa vente se déclenche quand le prix atteint le niveau
suivant.

    niveau i    : achat si prix <= niveau[i] et niveau[i] en attente
    niveau i>0  : vente de niveau[i-1] si prix >= niveau[i] et niveau[i-1] acheté

Après une vente, le niveau repasse en attente après `rearm_delay` secondes.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any, List

from ..exceptions import AlreadyRunningError, ConfigurationError, GridConfigError
from ..log_sink import get_logger, log_success
from ..models import StrategyKind, GridLevel, GridStatus, GridType
from .execution import StrategyConfig, TradeExecutor, TradeStats, to_decimal
from .scheduler import TickScheduler, format_duration


MIN_GRID_AMOUNT = Decimal("1")
CENT = Decimal("0.01")


@dataclass(kw_only=True)
class GridConfig(StrategyConfig):
    """Configuration de la grille"""
    total_investment: Decimal = Decimal("100")
    grid_count: int = 10
    lower_price: Decimal = Decimal("0.05")
    upper_price: Decimal = Decimal("0.20")
    grid_type: GridType = GridType.ARITHMETIC
    check_interval: float = 10
    rearm_delay: float = 2

    @property
    def amount_per_grid(self) -> Decimal:
        return (self.total_investment / Decimal(self.grid_count)).quantize(CENT, rounding=ROUND_HALF_UP)

    def validate(self):
        try:
            super().validate()
        except ConfigurationError as e:
            raise GridConfigError(str(e)) from e

        if self.grid_count < 1:
            raise GridConfigError(f"Grid count must be at least 1, got {self.grid_count}")
        if self.lower_price <= 0:
            raise GridConfigError("Lower price must be positive")
        if self.lower_price >= self.upper_price:
            raise GridConfigError(
                f"Lower price {self.lower_price} must be below upper price {self.upper_price}"
            )
        if self.amount_per_grid < MIN_GRID_AMOUNT:
            raise GridConfigError(
                f"Amount per grid {self.amount_per_grid} is below the minimum of {MIN_GRID_AMOUNT}, "
                f"raise the investment or lower the grid count"
            )
        if self.check_interval <= 0 or self.rearm_delay < 0:
            raise GridConfigError("Invalid check interval or re-arm delay")

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "total_investment": str(self.total_investment),
            "grid_count": self.grid_count,
            "lower_price": str(self.lower_price),
            "upper_price": str(self.upper_price),
            "grid_type": self.grid_type.value,
            "check_interval": self.check_interval,
            "rearm_delay": self.rearm_delay,
        })
        return base

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GridConfig":
        return cls(
            **cls._common(data),
            total_investment=to_decimal(data.get("total_investment"), "100"),
            grid_count=int(data.get("grid_count", 10)),
            lower_price=to_decimal(data.get("lower_price"), "0.05"),
            upper_price=to_decimal(data.get("upper_price"), "0.20"),
            grid_type=GridType(data.get("grid_type", "arithmetic")),
            check_interval=float(data.get("check_interval", 10)),
            rearm_delay=float(data.get("rearm_delay", 2)),
        )


def compute_levels(lower: Decimal, upper: Decimal, count: int, grid_type: GridType) -> List[Decimal]:
    """
    `count + 1` ascending prices, both bounds included.

    Arithmetic: constant step (upper - lower) / count.
    Geometric: constant ratio (upper / lower) ** (1 / count).
    """
    if grid_type == GridType.GEOMETRIC:
        ratio = (upper / lower) ** (Decimal(1) / Decimal(count))
        prices = [lower * ratio ** i for i in range(count)]
    else:
        step = (upper - lower) / Decimal(count)
        prices = [lower + step * i for i in range(count)]
    prices.append(upper)
    return prices


class GridStrategy:
    """
    Grid Trading Strategy

    Example:
        strategy = GridStrategy(
            {"total_investment": "100", "grid_count": 10,
             "lower_price": "0.05", "upper_price": "0.20"},
            client,
        )
        strategy.start()
    """

    kind = StrategyKind.GRID

    def __init__(self, config, client, bot_id: Optional[str] = None, storage=None, on_trade=None):
        self.config: GridConfig = config if isinstance(config, GridConfig) else GridConfig.from_dict(config or {})
        self.client = client
        self.bot_id = bot_id or f"grid-{uuid.uuid4().hex[:8]}"
        self.logger = get_logger("trade", f"grid.{self.bot_id}")

        self.levels: List[GridLevel] = []
        self.current_price: Optional[Decimal] = None
        self.realized_profit = Decimal("0")
        self.round_trips = 0
        self.stats = TradeStats()
        self._running = False

        self.executor = TradeExecutor(
            client, self.kind, self.bot_id, self.config, self.logger, storage=storage, on_trade=on_trade
        )
        self.scheduler = TickScheduler(
            self.run_tick, self.config.check_interval, self.logger, on_error=self._on_tick_error
        )

    def __repr__(self):
        c = self.config
        return f"GridStrategy({self.bot_id}, {c.grid_count} grids {c.lower_price}-{c.upper_price})"

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def timer(self):
        return self.scheduler.task

    # ==========================================
    # Setup
    # ==========================================

    def init_levels(self) -> List[GridLevel]:
        c = self.config
        amount = c.amount_per_grid
        self.levels = [
            GridLevel(price=p, amount=amount)
            for p in compute_levels(c.lower_price, c.upper_price, c.grid_count, c.grid_type)
        ]
        return self.levels

    # ==========================================
    # Lifecycle
    # ==========================================

    def start(self):
        if self._running:
            raise AlreadyRunningError(f"{self.bot_id} is already running")
        self.config.validate()
        self.init_levels()

        self._running = True
        self.stats.started_at = datetime.utcnow()
        self.stats.stopped_at = None

        c = self.config
        self.logger.info(
            f"Grid started: {len(self.levels)} levels {c.grid_type.value} "
            f"{c.lower_price}-{c.upper_price}, {c.amount_per_grid} {c.quote_token} per grid"
        )
        self.scheduler.start(name=f"tick-{self.bot_id}")

    def stop(self, reason: str = "user stop"):
        if not self._running:
            return
        self._running = False
        self.scheduler.stop()
        self.stats.stopped_at = datetime.utcnow()

        self.logger.info(
            f"Grid stopped ({reason}) after {format_duration(self.stats.running_time)}: "
            f"{self.stats.buy_count} buys, {self.stats.sell_count} sells, "
            f"{self.stats.failed_trades} failed, realized {self.realized_profit}, "
            f"floating {self.float_pnl()} {self.config.quote_token}",
            extra={"data": self.stats.to_dict()},
        )

    def reset(self):
        """Stop and clear levels and counters"""
        self.stop("reset")
        self.levels = []
        self.current_price = None
        self.realized_profit = Decimal("0")
        self.round_trips = 0
        self.stats = TradeStats()

    # ==========================================
    # Tick
    # ==========================================

    async def run_tick(self):
        c = self.config
        price = await self.client.get_price(c.base_token, c.quote_token)
        self.current_price = price
        self.stats.last_price = price

        for i, level in enumerate(self.levels):
            if price <= level.price and level.status == GridStatus.PENDING:
                await self._buy_level(i, level, price)

            if i > 0 and price >= level.price:
                previous = self.levels[i - 1]
                if previous.status == GridStatus.BOUGHT:
                    await self._sell_level(i - 1, previous, price)

    async def _buy_level(self, index: int, level: GridLevel, price: Decimal):
        self.logger.info(f"Grid #{index} ({level.price}) buy {level.amount} {self.config.quote_token} @ {price}")
        outcome = await self.executor.buy(level.amount, price)
        self.stats.record(outcome)
        if outcome.success:
            level.status = GridStatus.BOUGHT
            level.buy_ref = outcome.tx_ref
            level.buy_price = price

    async def _sell_level(self, index: int, level: GridLevel, price: Decimal):
        base_amount = level.base_amount
        self.logger.info(f"Grid #{index} ({level.price}) sell {base_amount} {self.config.base_token} @ {price}")
        outcome = await self.executor.sell(base_amount, price)
        self.stats.record(outcome)
        if not outcome.success:
            return

        level.status = GridStatus.SOLD
        level.sell_ref = outcome.tx_ref
        proceeds = outcome.record.amount_out if outcome.record.amount_out is not None else base_amount * price
        profit = proceeds - level.amount
        self.realized_profit += profit
        self.round_trips += 1
        log_success(self.logger, f"Grid #{index} round trip closed, profit {profit} {self.config.quote_token}")

        # Not cancelled by stop(): a sold level always goes back to pending
        asyncio.get_running_loop().call_later(self.config.rearm_delay, self._rearm, index, level)

    def _rearm(self, index: int, level: GridLevel):
        if level.status == GridStatus.SOLD:
            level.status = GridStatus.PENDING
            level.buy_ref = None
            level.sell_ref = None
            level.buy_price = None
            self.logger.debug(f"Grid #{index} ({level.price}) re-armed")

    def _on_tick_error(self, error: Exception):
        self.stats.tick_errors += 1
        self.stats.failed_trades += 1
        self.logger.error(f"Tick failed: {error}")

    # ==========================================
    # Status
    # ==========================================

    def float_pnl(self, price: Optional[Decimal] = None) -> Decimal:
        """Unrealized P&L of bought levels at `price` (default: last price)"""
        price = price if price is not None else self.current_price
        if price is None:
            return Decimal("0")
        return sum(
            ((price - level.price) * level.base_amount for level in self.levels if level.status == GridStatus.BOUGHT),
            Decimal("0"),
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "bot_id": self.bot_id,
            "is_running": self.is_running,
            "current_price": str(self.current_price) if self.current_price is not None else None,
            "total_grids": len(self.levels),
            "bought_grids": sum(1 for l in self.levels if l.status == GridStatus.BOUGHT),
            "amount_per_grid": str(self.config.amount_per_grid),
            "float_pnl": str(self.float_pnl()),
            "realized_profit": str(self.realized_profit),
            "round_trips": self.round_trips,
            "levels": [l.to_dict() for l in self.levels],
            "config": self.config.to_dict(),
            "stats": self.stats.to_dict(),
        }
