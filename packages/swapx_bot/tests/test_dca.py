"""
Tests for DCAStrategy.
"""
from decimal import Decimal

import pytest

from swapx_bot.strategies import DCAStrategy, DCAConfig


def make_strategy(client, storage=None, **overrides):
    config = {"amount": "10", "interval": 3600, "total_budget": "25"}
    config.update(overrides)
    return DCAStrategy(config, client, bot_id="dca-1", storage=storage)


class TestDCABudget:
    """Budget accounting and self-stop."""

    @pytest.mark.asyncio
    async def test_two_buys_then_budget_exhausted(self, fake_client, settle, sink):
        strategy = make_strategy(fake_client)

        strategy.start()
        await settle(strategy)
        await strategy.run_tick()

        assert strategy.executed_times == 2
        assert strategy.total_spent == Decimal("20")
        assert strategy.is_running

        await strategy.run_tick()

        assert not strategy.is_running
        assert strategy.completed_reason == "budget exhausted"
        assert len(fake_client.swaps) == 2
        # The exhausted tick does not even fetch a price
        assert fake_client.price_calls == 2
        assert len(sink.by_level("success", channel="trade")) >= 1
        assert sink.by_level("error", channel="trade") == []

    @pytest.mark.asyncio
    async def test_total_spent_is_nominal(self, fake_client):
        strategy = make_strategy(fake_client, total_budget="100")

        for price in ["0.1", "0.2", "0.05"]:
            fake_client.price = Decimal(price)
            await strategy.run_tick()

        assert strategy.total_spent == Decimal("30")
        assert strategy.total_acquired == Decimal("100") + Decimal("50") + Decimal("200")
        assert strategy.get_status()["progress"] == 30.0

    @pytest.mark.asyncio
    async def test_failed_buy_does_not_count(self, fake_client, insufficient_funds):
        strategy = make_strategy(fake_client)
        fake_client.swap_error = insufficient_funds

        await strategy.run_tick()

        assert strategy.total_spent == Decimal("0")
        assert strategy.executed_times == 0
        assert strategy.stats.failed_trades == 1

    @pytest.mark.asyncio
    async def test_max_price_skips_tick(self, fake_client):
        strategy = make_strategy(fake_client, max_price="0.09")
        fake_client.price = Decimal("0.10")

        await strategy.run_tick()
        assert fake_client.swaps == []

        fake_client.price = Decimal("0.09")
        await strategy.run_tick()
        assert len(fake_client.swaps) == 1

    @pytest.mark.asyncio
    async def test_total_times_cap(self, fake_client, settle):
        strategy = make_strategy(fake_client, total_budget="1000", total_times=1)

        strategy.start()
        await settle(strategy)
        await strategy.run_tick()

        assert strategy.executed_times == 1
        assert not strategy.is_running
        assert strategy.completed_reason == "target reached"


class TestDCAConfig:
    """Config parsing and counter restore."""

    def test_restored_counters(self):
        config = DCAConfig.from_dict({
            "amount": "10",
            "total_budget": "25",
            "total_spent": "20",
            "executed_times": 2,
        })
        assert config.total_spent == Decimal("20")
        assert config.executed_times == 2

    @pytest.mark.asyncio
    async def test_resumed_strategy_stops_at_budget(self, fake_client):
        strategy = make_strategy(fake_client, total_spent="20", executed_times=2)

        await strategy.run_tick()

        assert fake_client.swaps == []
        assert strategy.completed_reason == "budget exhausted"

    @pytest.mark.asyncio
    async def test_reset_clears_counters(self, fake_client):
        strategy = make_strategy(fake_client)
        await strategy.run_tick()

        strategy.reset()

        assert strategy.total_spent == Decimal("0")
        assert strategy.executed_times == 0
        assert strategy.stats.total_trades == 0


class TestDCALifecycle:

    @pytest.mark.asyncio
    async def test_stop_twice_logs_once(self, fake_client, sink):
        strategy = make_strategy(fake_client)
        strategy.start()

        strategy.stop()
        strategy.stop("again")

        assert not strategy.is_running
        assert strategy.timer is None
        assert len(sink.search("DCA stopped", channel="trade")) == 1
