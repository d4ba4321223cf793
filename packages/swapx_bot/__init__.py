"""
SwapX Bot
=========

Automated swap trading on a Uniswap V2 style AMM (SwapX on X1 by default).

Strategies:
    threshold  buy below a price, sell above another
    dca        fixed buys at a fixed interval until the budget is spent
    grid       buy/sell across price levels within a range

Quick Start:
------------

    import asyncio
    from swapx_bot import (
        load_config, Storage, ChainClient, BotManager, get_runner, install_log_sink
    )

    config = load_config()
    storage = Storage(config.db_path)
    install_log_sink(storage=storage)

    client = ChainClient(config)
    client.set_account(config.private_key)

    async def main():
        manager = BotManager(storage, client, get_runner())
        bot = manager.create_bot("Grid WXOC", "grid", {
            "total_investment": "100",
            "grid_count": 10,
            "lower_price": "0.05",
            "upper_price": "0.20",
        })
        manager.start_bot(bot.id)
        await asyncio.sleep(3600)
        manager.stop_bot(bot.id)

    asyncio.run(main())
"""

__version__ = "0.1.0"

from .config import AppConfig, NetworkSettings, TradingSettings, TokenSettings, load_config, save_config
from .exceptions import (
    SwapXBotError,
    ConfigurationError,
    GridConfigError,
    AlreadyRunningError,
    BotNotFoundError,
    BotRunningError,
)
from .models import (
    Bot,
    GridLevel,
    GridStatus,
    GridType,
    Receipt,
    StrategyKind,
    SwapResult,
    Token,
    TradeRecord,
    TradeSource,
    TradeStatus,
    TradeType,
)
from .log_sink import LogSink, SUCCESS, get_logger, install_log_sink, log_success
from .storage import Storage
from .chain import (
    ChainClient,
    ChainError,
    InsufficientFundsError,
    SwapError,
    TransactionRevertedError,
    UnsupportedTokenError,
    classify_swap_error,
)
from .strategies import (
    STRATEGIES,
    STRATEGY_REGISTRY,
    DCAStrategy,
    GridStrategy,
    ThresholdStrategy,
    create_strategy,
)
from .runner import StrategyRunner, get_runner
from .bot_manager import BotManager


__all__ = [
    # Config
    "AppConfig",
    "NetworkSettings",
    "TradingSettings",
    "TokenSettings",
    "load_config",
    "save_config",
    # Errors
    "SwapXBotError",
    "ConfigurationError",
    "GridConfigError",
    "AlreadyRunningError",
    "BotNotFoundError",
    "BotRunningError",
    "ChainError",
    "InsufficientFundsError",
    "SwapError",
    "TransactionRevertedError",
    "UnsupportedTokenError",
    "classify_swap_error",
    # Models
    "Bot",
    "GridLevel",
    "GridStatus",
    "GridType",
    "Receipt",
    "StrategyKind",
    "SwapResult",
    "Token",
    "TradeRecord",
    "TradeSource",
    "TradeStatus",
    "TradeType",
    # Logging / storage
    "LogSink",
    "SUCCESS",
    "get_logger",
    "install_log_sink",
    "log_success",
    "Storage",
    # Trading
    "ChainClient",
    "STRATEGIES",
    "STRATEGY_REGISTRY",
    "DCAStrategy",
    "GridStrategy",
    "ThresholdStrategy",
    "create_strategy",
    "StrategyRunner",
    "get_runner",
    "BotManager",
]
