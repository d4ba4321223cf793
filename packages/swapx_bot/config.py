"""
SwapX Bot - Configuration Management

Network, contracts and trading defaults. Values come from a JSON file when one
exists, then from the environment (a `.env` file is loaded first).
"""

import json
import logging
import os
from dataclasses import dataclass, asdict, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, Optional

from dotenv import load_dotenv


logger = logging.getLogger("swapx_bot.system")

CONFIG_PATH = os.path.join(os.path.expanduser("~"), ".swapx_bot", "config.json")
DB_PATH = os.path.join(os.path.expanduser("~"), ".swapx_bot", "swapx.db")


@dataclass
class TokenSettings:
    """ERC20 token known to the bot"""
    symbol: str
    address: str
    decimals: int
    name: str = ""


@dataclass
class NetworkSettings:
    """Chain and contract settings (SwapX V2 on X Layer One by default)"""
    name: str = "X1"
    chain_id: int = 3721
    rpc_url: str = "https://rpc.xone.org/"
    explorer_url: str = "https://xscscan.com"
    native_symbol: str = "XOC"
    wrapped_native_symbol: str = "WXOC"
    router: str = "0x89eA27957bb86FBFFC2e0ABfc5a5a64BB0343367"
    factory: str = "0x76bDc5a6190Ea31A6D5C7e93a8a2ff4dD15080A6"
    tokens: Dict[str, TokenSettings] = field(default_factory=lambda: {
        "USDT": TokenSettings("USDT", "0xb575796D293f37F112f3694b8ff48D711FE67EC7", 6, "Tether USD"),
        "WXOC": TokenSettings("WXOC", "0x4eabbaBeBbb358660cA080e8F2bb09E4a911AB4E", 18, "Wrapped XOC"),
    })


@dataclass
class TradingSettings:
    """Trading-related settings"""
    slippage: Decimal = Decimal("0.5")  # percent
    deadline_minutes: int = 20
    gas_multiplier: Decimal = Decimal("1.2")
    confirmation_timeout: int = 120  # seconds
    base_token: str = "WXOC"
    quote_token: str = "USDT"


@dataclass
class AppConfig:
    """Main application configuration"""
    network: NetworkSettings = field(default_factory=NetworkSettings)
    trading: TradingSettings = field(default_factory=TradingSettings)

    db_path: str = DB_PATH
    log_level: str = "INFO"
    max_log_entries: int = 1000

    # Never written to the config file
    private_key: Optional[str] = field(default=None, repr=False)

    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        data = asdict(self)
        data.pop("private_key", None)
        data["trading"] = {
            k: str(v) if isinstance(v, Decimal) else v
            for k, v in data["trading"].items()
        }
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        """Create config from dictionary"""
        config = cls()

        if "network" in data:
            network = dict(data["network"])
            tokens = network.pop("tokens", None)
            config.network = NetworkSettings(**network)
            if tokens:
                config.network.tokens = {
                    symbol: TokenSettings(**t) if isinstance(t, dict) else t
                    for symbol, t in tokens.items()
                }

        if "trading" in data:
            trading = dict(data["trading"])
            for key in ("slippage", "gas_multiplier"):
                if key in trading:
                    trading[key] = Decimal(str(trading[key]))
            config.trading = TradingSettings(**trading)

        for key in ["db_path", "log_level", "max_log_entries", "updated_at"]:
            if key in data:
                setattr(config, key, data[key])

        return config

    def get_token(self, symbol: str) -> Optional[TokenSettings]:
        """Token by symbol; the native coin resolves to its wrapped token"""
        symbol = symbol.upper()
        if symbol == self.network.native_symbol:
            symbol = self.network.wrapped_native_symbol
        return self.network.tokens.get(symbol)


def apply_env_overrides(config: AppConfig) -> AppConfig:
    """Override settings from SWAPX_* environment variables"""
    env = os.environ

    if env.get("SWAPX_RPC_URL"):
        config.network.rpc_url = env["SWAPX_RPC_URL"]
    if env.get("SWAPX_CHAIN_ID"):
        config.network.chain_id = int(env["SWAPX_CHAIN_ID"])
    if env.get("SWAPX_ROUTER"):
        config.network.router = env["SWAPX_ROUTER"]
    if env.get("SWAPX_FACTORY"):
        config.network.factory = env["SWAPX_FACTORY"]
    if env.get("SWAPX_SLIPPAGE"):
        config.trading.slippage = Decimal(env["SWAPX_SLIPPAGE"])
    if env.get("SWAPX_DB_PATH"):
        config.db_path = env["SWAPX_DB_PATH"]
    if env.get("SWAPX_LOG_LEVEL"):
        config.log_level = env["SWAPX_LOG_LEVEL"].upper()
    if env.get("SWAPX_PRIVATE_KEY"):
        config.private_key = env["SWAPX_PRIVATE_KEY"]

    return config


def load_config(config_path: str = CONFIG_PATH, use_env: bool = True) -> AppConfig:
    """Load configuration from file, then environment"""
    config = AppConfig()

    if os.path.exists(config_path):
        try:
            with open(config_path, "r") as f:
                data = json.load(f)
            config = AppConfig.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Error loading config {config_path}: {e}")

    if use_env:
        load_dotenv()
        apply_env_overrides(config)

    return config


def save_config(config: AppConfig, config_path: str = CONFIG_PATH):
    """Save configuration to file (private key excluded)"""
    directory = os.path.dirname(config_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    config.updated_at = datetime.now().isoformat()
    with open(config_path, "w") as f:
        json.dump(config.to_dict(), f, indent=2)
