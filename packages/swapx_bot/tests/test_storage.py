"""
Tests for Storage.
"""
import json
from decimal import Decimal

import pytest

from swapx_bot.models import TradeRecord, TradeType, TradeStatus, TradeSource, StrategyKind
from swapx_bot.storage import Storage


def make_trade(side=TradeType.BUY, status=TradeStatus.SUCCESS, bot_id="bot-1", amount_in="10", amount_out="100"):
    return TradeRecord(
        type=side,
        token_from="USDT" if side == TradeType.BUY else "WXOC",
        token_to="WXOC" if side == TradeType.BUY else "USDT",
        amount_in=Decimal(amount_in),
        amount_out=Decimal(amount_out),
        price=Decimal("0.1"),
        status=status,
        strategy_kind=StrategyKind.DCA,
        bot_id=bot_id,
    )


class TestKeyValue:

    def test_save_and_load(self, storage):
        assert storage.save("config", {"slippage": Decimal("0.5"), "enabled": True})
        assert storage.load("config") == {"slippage": "0.5", "enabled": True}

    def test_load_default(self, storage):
        assert storage.load("missing", []) == []

    def test_remove_and_clear(self, storage):
        storage.save("a", 1)
        storage.save("b", 2)
        assert storage.keys() == ["a", "b"]

        storage.remove("a")
        assert storage.load("a") is None

        assert storage.clear_all()
        assert storage.keys() == []

    def test_unserializable_value_is_reported_not_raised(self, storage):
        assert storage.save("bad", {"obj": object()}) is False
        assert storage.load("bad") is None

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "kv.db")
        Storage(path).save("wallet", {"address": "0xabc"})

        assert Storage(path).load("wallet") == {"address": "0xabc"}

    def test_in_memory(self):
        store = Storage(":memory:")
        store.save("x", [1, 2])
        assert store.load("x") == [1, 2]
        store.close()


class TestBots:

    def test_save_bot_inserts_then_replaces(self, storage):
        storage.save_bot({"id": "bot-1", "name": "A"})
        storage.save_bot({"id": "bot-2", "name": "B"})
        storage.save_bot({"id": "bot-1", "name": "A2"})

        assert [b["name"] for b in storage.get_bots()] == ["A2", "B"]

    def test_remove_bot(self, storage):
        storage.save_bots([{"id": "bot-1"}, {"id": "bot-2"}])
        storage.remove_bot("bot-1")
        assert storage.get_bots() == [{"id": "bot-2"}]


class TestTrades:

    def test_trades_newest_first_with_filters(self, storage):
        storage.save_trade(make_trade(bot_id="bot-1"))
        storage.save_trade(make_trade(side=TradeType.SELL, bot_id="bot-2", amount_in="50", amount_out="6"))
        storage.save_trade(make_trade(status=TradeStatus.FAILED, bot_id="bot-1"))

        trades = storage.get_trades()
        assert [t["status"] for t in trades] == ["failed", "success", "success"]
        assert len(storage.get_trades(bot_id="bot-1")) == 2
        assert len(storage.get_trades(status="failed")) == 1
        assert len(storage.get_trades(limit=1)) == 1

    def test_dict_trade_gets_id_and_timestamp(self, storage):
        storage.save_trade({"type": "BUY", "source": TradeSource.MANUAL.value, "amount_in": "1"})
        trade = storage.get_trades()[0]
        assert trade["id"]
        assert trade["timestamp"]

    def test_trade_stats(self, storage):
        storage.save_trade(make_trade(amount_in="10", amount_out="100"))
        storage.save_trade(make_trade(side=TradeType.SELL, amount_in="100", amount_out="12"))
        storage.save_trade(make_trade(status=TradeStatus.FAILED))

        stats = storage.trade_stats()

        assert stats["total_trades"] == 3
        assert stats["successful_trades"] == 2
        assert stats["failed_trades"] == 1
        assert stats["buy_volume"] == Decimal("10")
        assert stats["sell_volume"] == Decimal("12")
        assert stats["net_profit"] == Decimal("2")
        assert stats["success_rate"] == pytest.approx(66.67, rel=1e-3)

    def test_export_and_clear(self, storage, tmp_path):
        storage.save_trade(make_trade())
        storage.save_trade(make_trade())
        path = tmp_path / "trades.json"

        assert storage.export_trades(str(path)) == 2
        data = json.loads(path.read_text())
        assert len(data["trades"]) == 2
        assert "exported_at" in data

        storage.clear_trades()
        assert storage.get_trades() == []

    def test_record_round_trip(self, storage):
        trade = make_trade()
        storage.save_trade(trade)

        loaded = TradeRecord.from_dict(storage.get_trades()[0])
        assert loaded.id == trade.id
        assert loaded.amount_in == trade.amount_in
        assert loaded.strategy_kind == StrategyKind.DCA
        assert loaded.timestamp == trade.timestamp
