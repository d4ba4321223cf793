"""
Chain Client - Uniswap V2 style swaps over JSON-RPC

Price comes from the pair reserves, swaps go through the router
(swapExactTokensForTokens). The client is shared by every strategy of a
manager; sends are serialized so nonces never collide.
"""

import asyncio
import logging
import time
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.middleware import ExtraDataToPOAMiddleware
from eth_account import Account
from eth_account.signers.local import LocalAccount

from .config import AppConfig
from .models import Token, SwapResult, Receipt


logger = logging.getLogger("swapx_bot.system.chain")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
MAX_UINT256 = 2 ** 256 - 1


# Minimal ABIs
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "_owner", "type": "address"},
            {"name": "_spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_spender", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
]

ROUTER_ABI = [
    {
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "path", "type": "address[]"},
        ],
        "name": "getAmountsOut",
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "path", "type": "address[]"},
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "name": "swapExactTokensForTokens",
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

FACTORY_ABI = [
    {
        "constant": True,
        "inputs": [
            {"name": "tokenA", "type": "address"},
            {"name": "tokenB", "type": "address"},
        ],
        "name": "getPair",
        "outputs": [{"name": "pair", "type": "address"}],
        "type": "function",
    },
]

PAIR_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "getReserves",
        "outputs": [
            {"name": "_reserve0", "type": "uint112"},
            {"name": "_reserve1", "type": "uint112"},
            {"name": "_blockTimestampLast", "type": "uint32"},
        ],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "token0",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    },
]


# ==========================================
# Errors
# ==========================================

class ChainError(Exception):
    """Erreur RPC / contrat"""
    def __init__(self, message: str, error_code: str = ""):
        super().__init__(message)
        self.error_code = error_code


class InsufficientFundsError(ChainError):
    """Balance, gas ou output insuffisant"""
    pass


class TransactionRevertedError(ChainError):
    """Transaction minée avec status 0"""
    def __init__(self, message: str, tx_ref: str = ""):
        super().__init__(message, "REVERTED")
        self.tx_ref = tx_ref


class UnsupportedTokenError(ChainError):
    """Token inconnu de la configuration"""
    pass


class SwapError(ChainError):
    """Autre échec de swap"""
    pass


_INSUFFICIENT_MARKERS = ("insufficient funds", "insufficient_funds", "exceeds balance")


def classify_swap_error(exc: Exception) -> ChainError:
    """
    Map a raw web3 / RPC exception to a ChainError subclass.

    Insufficient-funds class errors (balance, gas, output amount) become
    InsufficientFundsError; everything else a SwapError.
    """
    if isinstance(exc, ChainError):
        return exc

    message = str(exc)
    lowered = message.lower()

    if "INSUFFICIENT_OUTPUT_AMOUNT" in message:
        return InsufficientFundsError(
            "Output below minimum, price moved beyond slippage", "INSUFFICIENT_OUTPUT_AMOUNT"
        )
    if any(marker in lowered for marker in _INSUFFICIENT_MARKERS):
        return InsufficientFundsError(f"Insufficient funds: {message}", "INSUFFICIENT_FUNDS")
    if "TRANSFER_FROM_FAILED" in message:
        return SwapError("Token transfer failed, check balance and allowance", "TRANSFER_FROM_FAILED")
    if "EXPIRED" in message:
        return SwapError("Transaction deadline expired", "EXPIRED")
    if isinstance(exc, ContractLogicError):
        return SwapError(f"Contract reverted: {message}", "CONTRACT_LOGIC")
    if isinstance(exc, TimeExhausted):
        return ChainError(f"Timed out: {message}", "TIMEOUT")
    return SwapError(message or type(exc).__name__, "UNKNOWN")


def is_insufficient_funds(exc: Exception) -> bool:
    """True for errors a strategy should report as a warning"""
    if isinstance(exc, ChainError):
        return isinstance(exc, InsufficientFundsError)
    message = str(exc)
    lowered = message.lower()
    return "INSUFFICIENT" in message or any(marker in lowered for marker in _INSUFFICIENT_MARKERS)


# ==========================================
# Pure helpers
# ==========================================

def price_from_reserves(reserve_in: int, reserve_out: int, decimals_in: int, decimals_out: int) -> Decimal:
    """Spot price of one token_in expressed in token_out"""
    if reserve_in == 0:
        raise ChainError("Pair has no liquidity", "NO_LIQUIDITY")
    amount_in = Decimal(reserve_in) / Decimal(10 ** decimals_in)
    amount_out = Decimal(reserve_out) / Decimal(10 ** decimals_out)
    return amount_out / amount_in


def min_amount_out(expected_out: int, slippage: Decimal) -> int:
    """Expected output reduced by slippage (percent), rounded down"""
    factor = (Decimal("100") - Decimal(str(slippage))) / Decimal("100")
    return int((Decimal(expected_out) * factor).to_integral_value(rounding=ROUND_DOWN))


class ChainClient:
    """
    Client AMM V2 (SwapX par défaut)

    Example:
        client = ChainClient(load_config())
        client.set_account(private_key)

        price = await client.get_price("WXOC", "USDT")
        result = await client.swap("USDT", "WXOC", Decimal("10"))
        receipt = await client.wait_for_confirmation(result.tx_ref)
    """

    def __init__(self, config: Optional[AppConfig] = None, w3: Optional[AsyncWeb3] = None):
        self.config = config or AppConfig()
        self._w3 = w3
        self._account: Optional[LocalAccount] = None
        self._send_lock = asyncio.Lock()

    @property
    def w3(self) -> AsyncWeb3:
        if self._w3 is None:
            w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.config.network.rpc_url))
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            self._w3 = w3
        return self._w3

    def set_account(self, private_key: str):
        """Configure le compte pour signer les transactions"""
        self._account = Account.from_key(private_key)
        logger.info(f"Wallet loaded: {self._account.address}")

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account else None

    @property
    def is_ready(self) -> bool:
        return self._account is not None

    def _require_account(self) -> LocalAccount:
        if self._account is None:
            raise ChainError("No wallet configured", "NO_WALLET")
        return self._account

    # ==========================================
    # Tokens & contracts
    # ==========================================

    def resolve_token(self, symbol: str) -> Token:
        settings = self.config.get_token(symbol)
        if settings is None:
            raise UnsupportedTokenError(f"Unsupported token: {symbol}", "UNSUPPORTED_TOKEN")
        return Token(
            symbol=settings.symbol,
            address=AsyncWeb3.to_checksum_address(settings.address),
            decimals=settings.decimals,
            name=settings.name,
        )

    def _contract(self, address: str, abi: list):
        return self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)

    @property
    def router(self):
        return self._contract(self.config.network.router, ROUTER_ABI)

    @property
    def factory(self):
        return self._contract(self.config.network.factory, FACTORY_ABI)

    # ==========================================
    # Prices
    # ==========================================

    async def get_price(self, token_in: str = "WXOC", token_out: str = "USDT") -> Decimal:
        """
        Prix spot d'un token_in en token_out, à partir des réserves de la paire.

        Raises:
            UnsupportedTokenError, ChainError (pas de paire / pas de liquidité)
        """
        t_in = self.resolve_token(token_in)
        t_out = self.resolve_token(token_out)

        pair_address = await self.factory.functions.getPair(t_in.address, t_out.address).call()
        if not pair_address or pair_address == ZERO_ADDRESS:
            raise ChainError(f"No pair for {t_in.symbol}/{t_out.symbol}", "NO_PAIR")

        pair = self._contract(pair_address, PAIR_ABI)
        reserve0, reserve1, _ = await pair.functions.getReserves().call()
        token0 = await pair.functions.token0().call()

        if token0.lower() == t_in.address.lower():
            reserve_in, reserve_out = reserve0, reserve1
        else:
            reserve_in, reserve_out = reserve1, reserve0

        return price_from_reserves(reserve_in, reserve_out, t_in.decimals, t_out.decimals)

    async def estimate_output(self, token_in: str, token_out: str, amount: Decimal) -> Decimal:
        """Router quote for `amount` of token_in"""
        t_in = self.resolve_token(token_in)
        t_out = self.resolve_token(token_out)
        amounts = await self.router.functions.getAmountsOut(
            t_in.to_wei(amount), [t_in.address, t_out.address]
        ).call()
        return t_out.from_wei(amounts[-1])

    # ==========================================
    # Balance & allowance
    # ==========================================

    async def get_native_balance(self, address: Optional[str] = None) -> Decimal:
        address = address or self._require_account().address
        wei = await self.w3.eth.get_balance(AsyncWeb3.to_checksum_address(address))
        return Decimal(wei) / Decimal(10 ** 18)

    async def get_token_balance(self, symbol: str, address: Optional[str] = None) -> Decimal:
        token = self.resolve_token(symbol)
        address = address or self._require_account().address
        contract = self._contract(token.address, ERC20_ABI)
        raw = await contract.functions.balanceOf(AsyncWeb3.to_checksum_address(address)).call()
        return token.from_wei(raw)

    async def get_allowance(self, symbol: str, spender: Optional[str] = None) -> int:
        token = self.resolve_token(symbol)
        owner = self._require_account().address
        spender = AsyncWeb3.to_checksum_address(spender or self.config.network.router)
        contract = self._contract(token.address, ERC20_ABI)
        return await contract.functions.allowance(owner, spender).call()

    async def approve(self, symbol: str, amount: Optional[int] = None, spender: Optional[str] = None) -> str:
        """Approve the router (unlimited by default), waits for the receipt"""
        token = self.resolve_token(symbol)
        spender = AsyncWeb3.to_checksum_address(spender or self.config.network.router)
        contract = self._contract(token.address, ERC20_ABI)

        logger.info(f"Approving {token.symbol} for {spender}")
        tx_ref = await self._send(contract.functions.approve(spender, amount if amount is not None else MAX_UINT256))
        await self.wait_for_confirmation(tx_ref)
        logger.info(f"Approval confirmed: {tx_ref}")
        return tx_ref

    # ==========================================
    # Swap
    # ==========================================

    async def swap(
        self,
        token_in: str,
        token_out: str,
        amount: Decimal,
        slippage: Optional[Decimal] = None,
    ) -> SwapResult:
        """
        Soumet un swap exact-in. Ne bloque pas jusqu'à la confirmation.

        Args:
            token_in: symbole vendu
            token_out: symbole acheté
            amount: montant de token_in (unités humaines)
            slippage: tolérance en %, défaut config

        Returns:
            SwapResult avec la référence de transaction
        """
        account = self._require_account()
        amount = Decimal(str(amount))
        if amount <= 0:
            raise SwapError("Amount must be positive", "INVALID_AMOUNT")

        t_in = self.resolve_token(token_in)
        t_out = self.resolve_token(token_out)
        if t_in.address == t_out.address:
            raise SwapError("Cannot swap a token for itself", "SAME_TOKEN")

        slippage = Decimal(str(slippage)) if slippage is not None else self.config.trading.slippage
        amount_wei = t_in.to_wei(amount)

        try:
            balance = await self._contract(t_in.address, ERC20_ABI).functions.balanceOf(account.address).call()
            if balance < amount_wei:
                raise InsufficientFundsError(
                    f"Insufficient {t_in.symbol}: have {t_in.from_wei(balance)}, need {amount}",
                    "INSUFFICIENT_BALANCE",
                )

            if await self.get_allowance(t_in.symbol) < amount_wei:
                await self.approve(t_in.symbol)

            path = [t_in.address, t_out.address]
            amounts = await self.router.functions.getAmountsOut(amount_wei, path).call()
            expected_wei = amounts[-1]
            min_out_wei = min_amount_out(expected_wei, slippage)
            deadline = int(time.time()) + self.config.trading.deadline_minutes * 60

            call = self.router.functions.swapExactTokensForTokens(
                amount_wei, min_out_wei, path, account.address, deadline
            )
            tx_ref = await self._send(call, check_gas_funds=True)
        except ChainError:
            raise
        except Exception as e:
            raise classify_swap_error(e) from e

        logger.info(f"Swap sent {amount} {t_in.symbol} -> {t_out.symbol}: {tx_ref}")
        return SwapResult(
            tx_ref=tx_ref,
            token_in=t_in.symbol,
            token_out=t_out.symbol,
            amount_in=amount,
            expected_out=t_out.from_wei(expected_wei),
            min_out=t_out.from_wei(min_out_wei),
        )

    async def _send(self, call, check_gas_funds: bool = False) -> str:
        """Build, sign and broadcast a contract call"""
        account = self._require_account()
        w3 = self.w3

        async with self._send_lock:
            nonce = await w3.eth.get_transaction_count(account.address, "pending")
            gas_price = await w3.eth.gas_price
            tx = await call.build_transaction({
                "from": account.address,
                "nonce": nonce,
                "gasPrice": gas_price,
                "chainId": self.config.network.chain_id,
            })

            estimated = await w3.eth.estimate_gas(tx)
            tx["gas"] = int(Decimal(estimated) * self.config.trading.gas_multiplier)

            if check_gas_funds:
                native = await w3.eth.get_balance(account.address)
                if native < tx["gas"] * gas_price:
                    raise InsufficientFundsError(
                        f"Not enough {self.config.network.native_symbol} for gas", "INSUFFICIENT_GAS"
                    )

            signed = account.sign_transaction(tx)
            tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)

        return AsyncWeb3.to_hex(tx_hash)

    async def wait_for_confirmation(self, tx_ref: str, timeout: Optional[int] = None) -> Receipt:
        """
        Attend le receipt.

        Raises:
            TransactionRevertedError: status 0
            ChainError: timeout
        """
        timeout = timeout or self.config.trading.confirmation_timeout
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_ref, timeout=timeout)
        except TimeExhausted as e:
            raise ChainError(f"Transaction {tx_ref} not mined after {timeout}s", "TIMEOUT") from e

        gas_used = receipt.get("gasUsed", 0)
        gas_price = receipt.get("effectiveGasPrice", 0)
        result = Receipt(
            tx_ref=tx_ref,
            status=receipt["status"],
            block_number=receipt["blockNumber"],
            gas_used=gas_used,
            fee_paid=Decimal(gas_used * gas_price) / Decimal(10 ** 18),
        )

        if not result.success:
            raise TransactionRevertedError(f"Transaction reverted: {tx_ref}", tx_ref)
        return result
