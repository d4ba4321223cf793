"""
Tests for configuration loading.
"""
import json
from decimal import Decimal

from swapx_bot.config import AppConfig, load_config, save_config


class TestAppConfig:

    def test_defaults(self):
        config = AppConfig()
        assert config.network.chain_id == 3721
        assert config.trading.slippage == Decimal("0.5")
        assert config.trading.gas_multiplier == Decimal("1.2")
        assert config.get_token("USDT").decimals == 6

    def test_dict_round_trip(self):
        config = AppConfig()
        config.trading.slippage = Decimal("1.5")
        config.private_key = "0xdeadbeef"

        data = json.loads(json.dumps(config.to_dict()))
        assert "private_key" not in data

        restored = AppConfig.from_dict(data)
        assert restored.trading.slippage == Decimal("1.5")
        assert restored.network.tokens["WXOC"].decimals == 18
        assert restored.private_key is None

    def test_save_and_load(self, tmp_path):
        path = str(tmp_path / "config.json")
        config = AppConfig()
        config.network.rpc_url = "http://localhost:8545"
        save_config(config, path)

        loaded = load_config(path, use_env=False)
        assert loaded.network.rpc_url == "http://localhost:8545"
        assert loaded.updated_at is not None

    def test_missing_file_gives_defaults(self, tmp_path):
        loaded = load_config(str(tmp_path / "nope.json"), use_env=False)
        assert loaded.network.rpc_url == AppConfig().network.rpc_url

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("SWAPX_RPC_URL", "http://node:8545")
        monkeypatch.setenv("SWAPX_SLIPPAGE", "2")
        monkeypatch.setenv("SWAPX_PRIVATE_KEY", "0xabc")

        loaded = load_config(str(tmp_path / "nope.json"))

        assert loaded.network.rpc_url == "http://node:8545"
        assert loaded.trading.slippage == Decimal("2")
        assert loaded.private_key == "0xabc"
