"""
Strategy implementations and registry
"""

from typing import Optional, Dict, Any

from ..models import StrategyKind
from .execution import StrategyConfig, TradeExecutor, TradeOutcome, TradeStats
from .scheduler import Strategy, TickScheduler, format_duration
from .threshold import ThresholdStrategy, ThresholdConfig
from .dca import DCAStrategy, DCAConfig
from .grid import GridStrategy, GridConfig, compute_levels


STRATEGY_REGISTRY = {
    StrategyKind.THRESHOLD: ThresholdStrategy,
    StrategyKind.DCA: DCAStrategy,
    StrategyKind.GRID: GridStrategy,
}

CONFIG_REGISTRY = {
    StrategyKind.THRESHOLD: ThresholdConfig,
    StrategyKind.DCA: DCAConfig,
    StrategyKind.GRID: GridConfig,
}

# Labels et configurations par défaut proposées à la création d'un bot
STRATEGIES: Dict[StrategyKind, Dict[str, Any]] = {
    StrategyKind.THRESHOLD: {
        "name": "Threshold buy/sell",
        "description": "Buy below a price, sell above another",
        "default_config": {
            "buy_threshold": "0.082",
            "sell_threshold": "0.15",
            "trade_amount": "1",
            "check_interval": 30,
        },
    },
    StrategyKind.DCA: {
        "name": "DCA",
        "description": "Buy a fixed amount at a fixed interval",
        "default_config": {
            "amount": "100",
            "interval": 3600,
            "total_budget": "1000",
            "total_times": 10,
        },
    },
    StrategyKind.GRID: {
        "name": "Grid trading",
        "description": "Buy and sell across price levels within a range",
        "default_config": {
            "total_investment": "100",
            "grid_count": 10,
            "lower_price": "0.05",
            "upper_price": "0.20",
            "grid_type": "arithmetic",
        },
    },
}

_missing = [k for k in StrategyKind if k not in STRATEGY_REGISTRY or k not in CONFIG_REGISTRY or k not in STRATEGIES]
if _missing:
    raise RuntimeError(f"Strategy kinds without registry entry: {[k.value for k in _missing]}")


def get_strategy_class(kind):
    """Classe de stratégie pour un discriminant (StrategyKind ou sa valeur)"""
    try:
        kind = StrategyKind(kind) if not isinstance(kind, StrategyKind) else kind
    except ValueError:
        raise ValueError(
            f"Unknown strategy type: {kind}. Available: {[k.value for k in STRATEGY_REGISTRY]}"
        ) from None
    return STRATEGY_REGISTRY[kind]


def default_config(kind) -> Dict[str, Any]:
    kind = StrategyKind(kind) if not isinstance(kind, StrategyKind) else kind
    return dict(STRATEGIES[kind]["default_config"])


def create_strategy(kind, config: Optional[Dict[str, Any]], client, bot_id: Optional[str] = None, **kwargs):
    """
    Factory

    Args:
        kind: StrategyKind or "threshold" / "dca" / "grid"
        config: variant config (dict or config dataclass); missing keys take defaults
        client: ChainClient
        bot_id: owning bot id
        **kwargs: storage, on_trade
    """
    strategy_class = get_strategy_class(kind)
    if isinstance(config, dict):
        merged = default_config(strategy_class.kind)
        merged.update(config)
        config = merged
    return strategy_class(config, client, bot_id=bot_id, **kwargs)


__all__ = [
    "Strategy",
    "StrategyConfig",
    "TickScheduler",
    "TradeExecutor",
    "TradeOutcome",
    "TradeStats",
    "ThresholdStrategy",
    "ThresholdConfig",
    "DCAStrategy",
    "DCAConfig",
    "GridStrategy",
    "GridConfig",
    "STRATEGY_REGISTRY",
    "CONFIG_REGISTRY",
    "STRATEGIES",
    "compute_levels",
    "create_strategy",
    "default_config",
    "format_duration",
    "get_strategy_class",
]
