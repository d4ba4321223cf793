"""
Tests for the chain client: pure helpers, then the client against a scripted node.
"""
from decimal import Decimal

import pytest
from eth_account import Account
from web3.exceptions import ContractLogicError

from swapx_bot.chain import (
    MAX_UINT256,
    ZERO_ADDRESS,
    ChainClient,
    ChainError,
    InsufficientFundsError,
    SwapError,
    TransactionRevertedError,
    UnsupportedTokenError,
    classify_swap_error,
    is_insufficient_funds,
    min_amount_out,
    price_from_reserves,
)


class TestPriceMath:

    def test_price_from_reserves(self):
        # 1,000,000 WXOC (18 dec) against 80,000 USDT (6 dec)
        price = price_from_reserves(10 ** 6 * 10 ** 18, 80_000 * 10 ** 6, 18, 6)
        assert price == Decimal("0.08")

    def test_inverse_price(self):
        price = price_from_reserves(80_000 * 10 ** 6, 10 ** 6 * 10 ** 18, 6, 18)
        assert price == Decimal("12.5")

    def test_empty_pool(self):
        with pytest.raises(ChainError):
            price_from_reserves(0, 100, 18, 6)

    @pytest.mark.parametrize("expected,slippage,minimum", [
        (1000, Decimal("0.5"), 995),
        (1001, Decimal("0.5"), 995),
        (1000, Decimal("0"), 1000),
        (10 ** 18, Decimal("1"), 99 * 10 ** 16),
    ])
    def test_min_amount_out(self, expected, slippage, minimum):
        assert min_amount_out(expected, slippage) == minimum


class TestErrorClassification:

    @pytest.mark.parametrize("message,error_type,code", [
        ("insufficient funds for gas * price + value", InsufficientFundsError, "INSUFFICIENT_FUNDS"),
        ("execution reverted: UniswapV2Router: INSUFFICIENT_OUTPUT_AMOUNT", InsufficientFundsError, "INSUFFICIENT_OUTPUT_AMOUNT"),
        ("execution reverted: TransferHelper: TRANSFER_FROM_FAILED", SwapError, "TRANSFER_FROM_FAILED"),
        ("execution reverted: UniswapV2Router: EXPIRED", SwapError, "EXPIRED"),
        ("connection reset", SwapError, "UNKNOWN"),
    ])
    def test_raw_errors(self, message, error_type, code):
        error = classify_swap_error(RuntimeError(message))
        assert type(error) is error_type
        assert error.error_code == code

    def test_contract_logic_error(self):
        error = classify_swap_error(ContractLogicError("execution reverted"))
        assert isinstance(error, SwapError)
        assert error.error_code == "CONTRACT_LOGIC"

    def test_chain_errors_pass_through(self):
        original = TransactionRevertedError("reverted", "0xabc")
        assert classify_swap_error(original) is original

    def test_is_insufficient_funds(self):
        assert is_insufficient_funds(InsufficientFundsError("x"))
        assert is_insufficient_funds(RuntimeError("ERC20: transfer amount exceeds balance"))
        assert not is_insufficient_funds(SwapError("deadline", "EXPIRED"))

    def test_classified_transfer_failure_is_not_insufficient_funds(self):
        error = classify_swap_error(ContractLogicError("execution reverted: TransferHelper: TRANSFER_FROM_FAILED"))

        assert error.error_code == "TRANSFER_FROM_FAILED"
        assert "balance" in str(error)
        assert not is_insufficient_funds(error)


class TestChainClient:

    def test_set_account(self):
        account = Account.create()
        client = ChainClient()
        assert not client.is_ready

        client.set_account(account.key.hex())

        assert client.address == account.address
        assert client.is_ready

    def test_resolve_token(self):
        client = ChainClient()
        usdt = client.resolve_token("usdt")
        assert usdt.decimals == 6
        assert usdt.to_wei(Decimal("1.5")) == 1_500_000

        # Native coin maps to the wrapped token
        assert client.resolve_token("XOC").symbol == "WXOC"

    def test_unknown_token(self):
        with pytest.raises(UnsupportedTokenError):
            ChainClient().resolve_token("DOGE")

    @pytest.mark.asyncio
    async def test_swap_requires_wallet(self):
        with pytest.raises(ChainError) as exc_info:
            await ChainClient().swap("USDT", "WXOC", Decimal("1"))
        assert exc_info.value.error_code == "NO_WALLET"

    @pytest.mark.asyncio
    async def test_swap_rejects_bad_input(self):
        client = ChainClient()
        client.set_account(Account.create().key.hex())

        with pytest.raises(SwapError):
            await client.swap("USDT", "WXOC", Decimal("0"))
        with pytest.raises(SwapError):
            await client.swap("WXOC", "XOC", Decimal("1"))


# ==========================================
# Client against a scripted node
# ==========================================

PAIR_ADDRESS = "0x" + "11" * 20
WXOC_RESERVE = 1_000_000 * 10 ** 18
USDT_RESERVE = 80_000 * 10 ** 6


class StubCall:
    """One bound contract function: `.call()` reads, `.build_transaction()` records a send."""

    def __init__(self, node, address, name, args):
        self.node = node
        self.address = address
        self.name = name
        self.args = args

    async def call(self):
        return self.node.read(self.address, self.name, self.args)

    async def build_transaction(self, params):
        self.node.built.append((self.name, self.args))
        return {**params, "to": self.address, "data": "0x", "value": 0}


class StubFunctions:

    def __init__(self, node, address):
        self._node = node
        self._address = address

    def __getattr__(self, name):
        return lambda *args: StubCall(self._node, self._address, name, args)


class StubContract:

    def __init__(self, node, address):
        self.address = address
        self.functions = StubFunctions(node, address)


class StubNode:
    """
    Stand-in for AsyncWeb3 with a single V2 pair and ERC20 state held in dicts.
    """

    def __init__(self, wxoc: str, usdt: str, token0: str):
        self.eth = self
        self.wxoc = wxoc
        self.usdt = usdt
        self.pair = PAIR_ADDRESS
        self.token0 = token0
        self.token_balances = {wxoc: 10 ** 24, usdt: 10 ** 12}
        self.allowances = {wxoc: 0, usdt: 0}
        self.native_balance = 10 ** 18
        self.quote_out = 1000 * 10 ** 18
        self.receipt_status = 1
        self.built = []
        self.raw_sent = []

    # Contracts

    def contract(self, address, abi):
        return StubContract(self, address)

    def read(self, address, name, args):
        if name == "getPair":
            return self.pair
        if name == "token0":
            return self.token0
        if name == "getReserves":
            if self.token0 == self.wxoc:
                return WXOC_RESERVE, USDT_RESERVE, 0
            return USDT_RESERVE, WXOC_RESERVE, 0
        if name == "balanceOf":
            return self.token_balances[address]
        if name == "allowance":
            return self.allowances[address]
        if name == "getAmountsOut":
            return [args[0], self.quote_out]
        raise AssertionError(f"unexpected read {name}")

    # Node

    async def get_transaction_count(self, address, block="latest"):
        return len(self.raw_sent)

    @property
    async def gas_price(self):
        return 10 ** 9

    async def estimate_gas(self, tx):
        return 100_000

    async def get_balance(self, address):
        return self.native_balance

    async def send_raw_transaction(self, raw):
        self.raw_sent.append(raw)
        return bytes([len(self.raw_sent)]) * 32

    async def wait_for_transaction_receipt(self, tx_ref, timeout=120):
        return {"status": self.receipt_status, "blockNumber": 42, "gasUsed": 21000, "effectiveGasPrice": 10 ** 9}


def stub_client(token0="WXOC"):
    config_client = ChainClient()
    wxoc = config_client.resolve_token("WXOC").address
    usdt = config_client.resolve_token("USDT").address
    node = StubNode(wxoc, usdt, token0=wxoc if token0 == "WXOC" else usdt)
    client = ChainClient(w3=node)
    client.set_account(Account.create().key.hex())
    return client, node


class TestChainClientPrices:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token0", ["WXOC", "USDT"])
    async def test_price_follows_token0_order(self, token0):
        client, _ = stub_client(token0)

        assert await client.get_price("WXOC", "USDT") == Decimal("0.08")
        assert await client.get_price("USDT", "WXOC") == Decimal("12.5")

    @pytest.mark.asyncio
    async def test_missing_pair(self):
        client, node = stub_client()
        node.pair = ZERO_ADDRESS

        with pytest.raises(ChainError) as exc_info:
            await client.get_price("WXOC", "USDT")
        assert exc_info.value.error_code == "NO_PAIR"


class TestChainClientSwap:

    @pytest.mark.asyncio
    async def test_approves_when_allowance_is_short(self):
        client, node = stub_client()

        result = await client.swap("USDT", "WXOC", Decimal("10"))

        assert [name for name, _ in node.built] == ["approve", "swapExactTokensForTokens"]
        assert node.built[0][1][1] == MAX_UINT256
        assert len(node.raw_sent) == 2
        assert result.tx_ref.startswith("0x")

    @pytest.mark.asyncio
    async def test_skips_approval_when_allowance_covers_amount(self):
        client, node = stub_client()
        node.allowances[node.usdt] = MAX_UINT256

        await client.swap("USDT", "WXOC", Decimal("10"))

        assert [name for name, _ in node.built] == ["swapExactTokensForTokens"]

    @pytest.mark.asyncio
    async def test_min_out_applies_slippage(self):
        client, node = stub_client()
        node.allowances[node.usdt] = MAX_UINT256

        result = await client.swap("USDT", "WXOC", Decimal("10"), slippage=Decimal("1"))

        amount_in, amount_out_min, path, recipient, deadline = node.built[0][1]
        assert amount_in == 10 * 10 ** 6
        assert amount_out_min == min_amount_out(node.quote_out, Decimal("1")) == 990 * 10 ** 18
        assert path == [node.usdt, node.wxoc]
        assert recipient == client.address
        assert result.expected_out == Decimal("1000")
        assert result.min_out == Decimal("990")

    @pytest.mark.asyncio
    async def test_low_token_balance(self):
        client, node = stub_client()
        node.token_balances[node.usdt] = 5 * 10 ** 6

        with pytest.raises(InsufficientFundsError) as exc_info:
            await client.swap("USDT", "WXOC", Decimal("10"))

        assert exc_info.value.error_code == "INSUFFICIENT_BALANCE"
        assert node.built == []
        assert node.raw_sent == []

    @pytest.mark.asyncio
    async def test_low_gas_balance(self):
        client, node = stub_client()
        node.allowances[node.usdt] = MAX_UINT256
        node.native_balance = 0

        with pytest.raises(InsufficientFundsError) as exc_info:
            await client.swap("USDT", "WXOC", Decimal("10"))

        assert exc_info.value.error_code == "INSUFFICIENT_GAS"
        assert node.raw_sent == []


class TestChainClientConfirmation:

    @pytest.mark.asyncio
    async def test_confirmed_receipt(self):
        client, _ = stub_client()

        receipt = await client.wait_for_confirmation("0xabc")

        assert receipt.success
        assert receipt.block_number == 42
        assert receipt.fee_paid == Decimal(21000 * 10 ** 9) / Decimal(10 ** 18)

    @pytest.mark.asyncio
    async def test_reverted_receipt(self):
        client, node = stub_client()
        node.receipt_status = 0

        with pytest.raises(TransactionRevertedError) as exc_info:
            await client.wait_for_confirmation("0xabc")

        assert exc_info.value.tx_ref == "0xabc"
        assert exc_info.value.error_code == "REVERTED"
