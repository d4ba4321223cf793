"""
Bot Manager - persistent bots on top of the Strategy Runner

Un bot = une stratégie + sa configuration + ses statistiques persistées.
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from .exceptions import BotNotFoundError, BotRunningError
from .log_sink import get_logger
from .models import Bot, StrategyKind, TradeRecord, TradeSource, TradeType
from .runner import StrategyRunner
from .strategies import create_strategy, default_config, CONFIG_REGISTRY
from .strategies.execution import StrategyConfig, TradeExecutor, TradeOutcome


logger = logging.getLogger("swapx_bot.system.bots")

STATS_SYNC_INTERVAL = 1.0  # seconds


class BotManager:
    """
    Gestion du cycle de vie des bots

    Example:
        manager = BotManager(storage, client, get_runner())
        bot = manager.create_bot("DCA WXOC", "dca", {"amount": "10", "total_budget": "100"})
        manager.start_bot(bot.id)
    """

    def __init__(
        self,
        storage,
        client,
        runner: StrategyRunner,
        stats_interval: float = STATS_SYNC_INTERVAL,
    ):
        self.storage = storage
        self.client = client
        self.runner = runner
        self.stats_interval = stats_interval
        self._bots: Dict[str, Bot] = {}
        self.load()

    # ==========================================
    # Persistence
    # ==========================================

    def load(self):
        """Load bots from storage. Nothing is running after a process restart."""
        self._bots = {}
        for data in self.storage.get_bots():
            try:
                bot = Bot.from_dict(data)
            except (KeyError, ValueError) as e:
                logger.error(f"Skipping invalid bot record: {e}")
                continue
            bot.is_running = self.runner.is_running(bot.id)
            self._bots[bot.id] = bot

    def _save(self, bot: Bot):
        self.storage.save_bot(bot.to_dict())

    # ==========================================
    # CRUD
    # ==========================================

    def list_bots(self) -> List[Bot]:
        return list(self._bots.values())

    def get_bot(self, bot_id: str) -> Bot:
        bot = self._bots.get(bot_id)
        if bot is None:
            raise BotNotFoundError(f"Bot not found: {bot_id}")
        return bot

    def create_bot(self, name: str, kind, config: Optional[Dict[str, Any]] = None) -> Bot:
        kind = kind if isinstance(kind, StrategyKind) else StrategyKind(kind)
        merged = default_config(kind)
        merged.update(config or {})

        # Parse once so a bad config is rejected at creation
        CONFIG_REGISTRY[kind].from_dict(merged)

        bot = Bot(name=name, strategy_kind=kind, config=merged)
        self._bots[bot.id] = bot
        self._save(bot)
        logger.info(f"Bot created: {bot.name} ({bot.id}, {kind.value})")
        return bot

    def update_bot(self, bot_id: str, name: Optional[str] = None, config: Optional[Dict[str, Any]] = None) -> Bot:
        """Rename or reconfigure; config changes require a stopped bot"""
        bot = self.get_bot(bot_id)
        if config is not None:
            if self.runner.is_running(bot_id):
                raise BotRunningError(f"Stop {bot.name} before changing its configuration")
            merged = dict(bot.config)
            merged.update(config)
            CONFIG_REGISTRY[bot.strategy_kind].from_dict(merged)
            bot.config = merged
        if name:
            bot.name = name
        self._save(bot)
        return bot

    def delete_bot(self, bot_id: str):
        bot = self.get_bot(bot_id)
        if bot_id in self.runner:
            self.stop_bot(bot_id, reason="deleted")
        del self._bots[bot_id]
        self.storage.remove_bot(bot_id)
        logger.info(f"Bot deleted: {bot.name} ({bot_id})")

    # ==========================================
    # Start / stop
    # ==========================================

    def start_bot(self, bot_id: str, resume: bool = False) -> Bot:
        """
        Build a fresh strategy for the bot and start it.

        Must run inside the event loop. With `resume`, DCA counters are
        restored from the bot's persisted stats.
        """
        bot = self.get_bot(bot_id)
        if self.runner.is_running(bot_id):
            logger.warning(f"Bot {bot.name} is already running")
            return bot

        # A dead entry (strategy stopped on its own) is replaced
        self.runner.stop(bot_id, reason="restart")

        config = dict(bot.config)
        if resume and bot.strategy_kind == StrategyKind.DCA:
            config["total_spent"] = bot.stats.get("total_spent", "0")
            config["executed_times"] = bot.stats.get("executed_times", 0)

        strategy = create_strategy(bot.strategy_kind, config, self.client, bot_id=bot.id, storage=self.storage)
        self.runner.register(bot.id, strategy)

        bot.is_running = True
        try:
            self.runner.start(bot.id)
        except Exception:
            bot.is_running = False
            self._save(bot)
            raise

        bot.stats["started_at"] = datetime.utcnow().isoformat()
        self._save(bot)
        self.runner.register_timer(
            bot.id, asyncio.get_running_loop().create_task(self._stats_loop(bot.id), name=f"stats-{bot.id}")
        )
        logger.info(f"Bot started: {bot.name}")
        return bot

    def stop_bot(self, bot_id: str, reason: str = "user stop") -> Bot:
        bot = self.get_bot(bot_id)
        strategy = self.runner.get(bot_id)
        if strategy is not None:
            self._sync_stats(bot, strategy)
        self.runner.stop(bot_id, reason)
        bot.is_running = False
        self._save(bot)
        logger.info(f"Bot stopped: {bot.name} ({reason})")
        return bot

    def toggle_bot(self, bot_id: str) -> Bot:
        if self.runner.is_running(bot_id):
            return self.stop_bot(bot_id)
        return self.start_bot(bot_id)

    def is_running(self, bot_id: str) -> bool:
        return self.runner.is_running(bot_id)

    def get_status(self, bot_id: str) -> Dict[str, Any]:
        bot = self.get_bot(bot_id)
        strategy = self.runner.get(bot_id)
        status = bot.to_dict()
        status["is_running"] = self.runner.is_running(bot_id)
        if strategy is not None:
            status["strategy"] = strategy.get_status()
        return status

    # ==========================================
    # Stats sync
    # ==========================================

    async def _stats_loop(self, bot_id: str):
        while True:
            await asyncio.sleep(self.stats_interval)
            bot = self._bots.get(bot_id)
            strategy = self.runner.get(bot_id)
            if bot is None or strategy is None:
                return

            self._sync_stats(bot, strategy)
            if not strategy.is_running:
                # Terminal completion (e.g. DCA budget exhausted)
                bot.is_running = False
                self._save(bot)
                logger.info(f"Bot {bot.name} finished on its own")
                self.runner.stop(bot_id, reason="completed")
                return
            self._save(bot)

    def _sync_stats(self, bot: Bot, strategy):
        status = strategy.get_status()
        stats = status.get("stats", {})
        bot.stats.update({
            "total_trades": stats.get("total_trades", 0),
            "success_trades": stats.get("success_trades", 0),
            "failed_trades": stats.get("failed_trades", 0),
            "total_volume": stats.get("total_volume", "0"),
            "running_time": stats.get("running_time", 0),
            "last_price": stats.get("last_price"),
        })
        if bot.strategy_kind == StrategyKind.DCA:
            bot.stats["total_spent"] = status.get("total_spent", "0")
            bot.stats["executed_times"] = status.get("executed_times", 0)

    # ==========================================
    # Manual trading
    # ==========================================

    async def manual_trade(
        self,
        side,
        amount: Decimal,
        slippage: Optional[Decimal] = None,
        base_token: Optional[str] = None,
        quote_token: Optional[str] = None,
    ) -> TradeOutcome:
        """
        One-off swap outside any bot, recorded with source=manual.

        BUY spends `amount` of the quote token; SELL sells `amount` of the base token.
        """
        side = side if isinstance(side, TradeType) else TradeType(str(side).upper())
        trading = self.client.config.trading
        config = StrategyConfig(
            base_token=base_token or trading.base_token,
            quote_token=quote_token or trading.quote_token,
            slippage=Decimal(str(slippage)) if slippage is not None else trading.slippage,
        )
        config.validate()

        executor = TradeExecutor(
            self.client,
            kind=None,
            bot_id=None,
            config=config,
            logger=get_logger("trade", "manual"),
            storage=self.storage,
            source=TradeSource.MANUAL,
        )

        price = None
        try:
            price = await self.client.get_price(config.base_token, config.quote_token)
        except Exception as e:
            logger.warning(f"Price unavailable for manual trade: {e}")

        amount = Decimal(str(amount))
        if side == TradeType.BUY:
            return await executor.buy(amount, price)
        return await executor.sell(amount, price)

    def trade_history(self, bot_id: Optional[str] = None, limit: Optional[int] = None) -> List[TradeRecord]:
        return [TradeRecord.from_dict(t) for t in self.storage.get_trades(bot_id=bot_id, limit=limit)]
