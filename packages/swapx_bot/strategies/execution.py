"""
Trade execution shared by every strategy

A strategy decides *when* to buy or sell; TradeExecutor does the swap, waits
for the receipt, writes exactly one TradeRecord per attempt and reports the
outcome. It never raises: failures come back as a failed TradeOutcome.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, Callable

from ..chain import classify_swap_error, is_insufficient_funds
from ..exceptions import ConfigurationError
from ..log_sink import log_success
from ..models import (
    StrategyKind, TradeRecord, TradeType, TradeSource, TradeStatus, Receipt
)


def to_decimal(value, default: Optional[str] = None) -> Optional[Decimal]:
    if value is None or value == "":
        return Decimal(default) if default is not None else None
    return Decimal(str(value))


@dataclass(kw_only=True)
class StrategyConfig:
    """Paramètres communs à toutes les stratégies"""
    base_token: str = "WXOC"
    quote_token: str = "USDT"
    slippage: Decimal = Decimal("0.5")  # %

    def validate(self):
        if not Decimal("0") <= self.slippage < Decimal("100"):
            raise ConfigurationError(f"Slippage must be within [0, 100), got {self.slippage}")
        if self.base_token.upper() == self.quote_token.upper():
            raise ConfigurationError("Base and quote tokens must differ")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_token": self.base_token,
            "quote_token": self.quote_token,
            "slippage": str(self.slippage),
        }

    @staticmethod
    def _common(data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "base_token": data.get("base_token", "WXOC"),
            "quote_token": data.get("quote_token", "USDT"),
            "slippage": to_decimal(data.get("slippage"), "0.5"),
        }


@dataclass
class TradeOutcome:
    """Résultat d'une tentative de swap"""
    record: TradeRecord
    receipt: Optional[Receipt] = None
    error: Optional[Exception] = None
    insufficient_funds: bool = False

    @property
    def success(self) -> bool:
        return self.record.success

    @property
    def tx_ref(self) -> Optional[str]:
        return self.record.tx_ref


@dataclass
class TradeStats:
    """Compteurs de trading d'une instance de stratégie"""
    buy_count: int = 0
    sell_count: int = 0
    buy_volume: Decimal = Decimal("0")   # quote spent
    sell_volume: Decimal = Decimal("0")  # quote received
    base_bought: Decimal = Decimal("0")
    base_sold: Decimal = Decimal("0")
    failed_trades: int = 0
    insufficient_funds: int = 0
    tick_errors: int = 0
    last_price: Optional[Decimal] = None
    last_trade_time: Optional[datetime] = None
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None

    def record(self, outcome: TradeOutcome):
        trade = outcome.record
        if not outcome.success:
            self.failed_trades += 1
            if outcome.insufficient_funds:
                self.insufficient_funds += 1
            return

        self.last_trade_time = trade.timestamp
        out = trade.amount_out or Decimal("0")
        if trade.type == TradeType.BUY:
            self.buy_count += 1
            self.buy_volume += trade.amount_in
            self.base_bought += out
        else:
            self.sell_count += 1
            self.base_sold += trade.amount_in
            self.sell_volume += out

    @property
    def success_trades(self) -> int:
        return self.buy_count + self.sell_count

    @property
    def total_trades(self) -> int:
        return self.success_trades + self.failed_trades

    @property
    def total_volume(self) -> Decimal:
        return self.buy_volume + self.sell_volume

    @property
    def net_quote(self) -> Decimal:
        """Sell proceeds minus buy spend"""
        return self.sell_volume - self.buy_volume

    @property
    def net_base(self) -> Decimal:
        return self.base_bought - self.base_sold

    @property
    def avg_buy_price(self) -> Decimal:
        return self.buy_volume / self.base_bought if self.base_bought > 0 else Decimal("0")

    @property
    def avg_sell_price(self) -> Decimal:
        return self.sell_volume / self.base_sold if self.base_sold > 0 else Decimal("0")

    @property
    def success_rate(self) -> float:
        if self.total_trades == 0:
            return 0.0
        return self.success_trades / self.total_trades * 100

    @property
    def running_time(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.stopped_at or datetime.utcnow()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_trades": self.total_trades,
            "success_trades": self.success_trades,
            "failed_trades": self.failed_trades,
            "insufficient_funds": self.insufficient_funds,
            "tick_errors": self.tick_errors,
            "buy_count": self.buy_count,
            "sell_count": self.sell_count,
            "buy_volume": str(self.buy_volume),
            "sell_volume": str(self.sell_volume),
            "base_bought": str(self.base_bought),
            "base_sold": str(self.base_sold),
            "net_base": str(self.net_base),
            "net_quote": str(self.net_quote),
            "avg_buy_price": str(self.avg_buy_price),
            "avg_sell_price": str(self.avg_sell_price),
            "total_volume": str(self.total_volume),
            "success_rate": round(self.success_rate, 2),
            "last_price": str(self.last_price) if self.last_price is not None else None,
            "last_trade_time": self.last_trade_time.isoformat() if self.last_trade_time else None,
            "running_time": int(self.running_time),
        }


class TradeExecutor:
    """
    Buy/sell for one strategy instance.

    Args:
        client: ChainClient (or anything with swap / wait_for_confirmation)
        kind: strategy discriminant written on each TradeRecord
        bot_id: owning bot
        config: StrategyConfig (tokens, slippage)
        logger: trade channel logger of the strategy
        storage: optional Storage, trades are appended to it
        on_trade: optional callback(TradeRecord)
    """

    def __init__(
        self,
        client,
        kind: Optional[StrategyKind],
        bot_id: Optional[str],
        config: StrategyConfig,
        logger: logging.Logger,
        storage=None,
        on_trade: Optional[Callable[[TradeRecord], None]] = None,
        source: TradeSource = TradeSource.BOT,
    ):
        self.client = client
        self.kind = kind
        self.bot_id = bot_id
        self.config = config
        self.logger = logger
        self.storage = storage
        self.on_trade = on_trade
        self.source = source

    async def buy(self, quote_amount: Decimal, price: Optional[Decimal] = None) -> TradeOutcome:
        """Spend `quote_amount` of the quote token on the base token"""
        return await self._execute(
            TradeType.BUY, self.config.quote_token, self.config.base_token, quote_amount, price
        )

    async def sell(self, base_amount: Decimal, price: Optional[Decimal] = None) -> TradeOutcome:
        """Sell `base_amount` of the base token for the quote token"""
        return await self._execute(
            TradeType.SELL, self.config.base_token, self.config.quote_token, base_amount, price
        )

    async def _execute(
        self,
        side: TradeType,
        token_from: str,
        token_to: str,
        amount: Decimal,
        price: Optional[Decimal],
    ) -> TradeOutcome:
        record = TradeRecord(
            type=side,
            source=self.source,
            strategy_kind=self.kind,
            bot_id=self.bot_id,
            token_from=token_from,
            token_to=token_to,
            amount_in=amount,
            price=price,
            status=TradeStatus.FAILED,
        )

        receipt = None
        error = None
        try:
            result = await self.client.swap(token_from, token_to, amount, self.config.slippage)
            record.tx_ref = result.tx_ref
            record.amount_out = result.expected_out
            receipt = await self.client.wait_for_confirmation(result.tx_ref)
            record.status = TradeStatus.SUCCESS
        except Exception as e:
            error = classify_swap_error(e)
            record.error = str(error)

        insufficient = error is not None and is_insufficient_funds(error)
        outcome = TradeOutcome(record=record, receipt=receipt, error=error, insufficient_funds=insufficient)
        self._log(outcome)
        self._persist(record)
        return outcome

    def _log(self, outcome: TradeOutcome):
        trade = outcome.record
        data = trade.to_dict()
        label = f"{trade.type.value} {trade.amount_in} {trade.token_from} -> {trade.token_to}"
        if trade.price is not None:
            label += f" @ {trade.price}"

        if outcome.success:
            log_success(
                self.logger,
                f"{label} confirmed (block {outcome.receipt.block_number}, tx {trade.tx_ref})",
                extra={"data": data},
            )
        elif outcome.insufficient_funds:
            self.logger.warning(f"{label} failed, insufficient funds: {trade.error}", extra={"data": data})
        else:
            self.logger.error(f"{label} failed: {trade.error}", extra={"data": data})

    def _persist(self, record: TradeRecord):
        if self.storage is not None:
            self.storage.save_trade(record)
        if self.on_trade is not None:
            try:
                self.on_trade(record)
            except Exception as e:
                self.logger.error(f"Trade callback failed: {e}")
