"""
Shared fixtures: a scripted chain client, storage, log sink.
"""
import asyncio
from decimal import Decimal

import pytest

from swapx_bot.chain import InsufficientFundsError, TransactionRevertedError
from swapx_bot.config import AppConfig
from swapx_bot.log_sink import LogSink
from swapx_bot.models import SwapResult, Receipt
from swapx_bot.storage import Storage


class FakeChainClient:
    """Chain client with a settable price and scripted failures."""

    def __init__(self, price="0.1"):
        self.config = AppConfig()
        self.price = Decimal(price)
        self.price_error = None
        self.swap_error = None
        self.revert = False
        self.swap_delay = 0
        self.price_calls = 0
        self.swaps = []
        self._block = 1000

    async def get_price(self, token_in="WXOC", token_out="USDT"):
        self.price_calls += 1
        if self.price_error is not None:
            raise self.price_error
        return self.price

    async def swap(self, token_in, token_out, amount, slippage=None):
        if self.swap_delay:
            await asyncio.sleep(self.swap_delay)
        if self.swap_error is not None:
            raise self.swap_error

        amount = Decimal(str(amount))
        self.swaps.append((token_in, token_out, amount))
        if token_in == self.config.trading.quote_token:
            expected = amount / self.price
        else:
            expected = amount * self.price
        return SwapResult(
            tx_ref=f"0x{len(self.swaps):064x}",
            token_in=token_in,
            token_out=token_out,
            amount_in=amount,
            expected_out=expected,
            min_out=expected * Decimal("0.995"),
        )

    async def wait_for_confirmation(self, tx_ref, timeout=None):
        self._block += 1
        if self.revert:
            raise TransactionRevertedError(f"Transaction reverted: {tx_ref}", tx_ref)
        return Receipt(tx_ref=tx_ref, status=1, block_number=self._block, gas_used=150000)


@pytest.fixture
def fake_client():
    return FakeChainClient()


@pytest.fixture
def insufficient_funds():
    return InsufficientFundsError("Insufficient USDT: have 0, need 1", "INSUFFICIENT_BALANCE")


@pytest.fixture
def storage(tmp_path):
    """Storage on a temporary SQLite file."""
    store = Storage(str(tmp_path / "swapx_test.db"))
    yield store
    store.close()


@pytest.fixture
def sink():
    """Log sink attached to both channels for the duration of a test."""
    log_sink = LogSink(max_entries=1000).install()
    yield log_sink
    log_sink.uninstall()


async def _settle(strategy, rounds: int = 5):
    for _ in range(rounds):
        await asyncio.sleep(0)
    await strategy.scheduler.wait_idle()


@pytest.fixture
def settle():
    """Let a freshly started strategy run its first tick."""
    return _settle
