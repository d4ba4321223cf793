"""
Data Models - Bots, trades, grid levels, chain results
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any


class StrategyKind(Enum):
    """Types de stratégies supportées"""
    THRESHOLD = "threshold"
    DCA = "dca"
    GRID = "grid"


class TradeType(Enum):
    """Direction du trade"""
    BUY = "BUY"
    SELL = "SELL"


class TradeSource(Enum):
    """Origine du trade"""
    BOT = "bot"
    MANUAL = "manual"


class TradeStatus(Enum):
    """État final d'une tentative de swap"""
    SUCCESS = "success"
    FAILED = "failed"


class GridStatus(Enum):
    """État d'un niveau de grille"""
    PENDING = "pending"
    BOUGHT = "bought"
    SOLD = "sold"


class GridType(Enum):
    """Espacement des niveaux"""
    ARITHMETIC = "arithmetic"
    GEOMETRIC = "geometric"


def _decimal_or_none(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _str_or_none(value) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass
class Token:
    """ERC20 token on the active chain"""
    symbol: str
    address: str
    decimals: int
    name: str = ""

    def to_wei(self, amount: Decimal) -> int:
        """Convert human amount to base units"""
        return int(Decimal(str(amount)) * Decimal(10 ** self.decimals))

    def from_wei(self, wei_amount: int) -> Decimal:
        """Convert base units to human amount"""
        return Decimal(wei_amount) / Decimal(10 ** self.decimals)


@dataclass
class SwapResult:
    """Swap soumis (pas encore confirmé)"""
    tx_ref: str
    token_in: str
    token_out: str
    amount_in: Decimal
    expected_out: Decimal
    min_out: Decimal


@dataclass
class Receipt:
    """Receipt of a confirmed transaction"""
    tx_ref: str
    status: int
    block_number: int
    gas_used: int = 0
    fee_paid: Decimal = Decimal("0")

    @property
    def success(self) -> bool:
        return self.status == 1


@dataclass
class GridLevel:
    """Un niveau de prix dans la grille"""
    price: Decimal
    amount: Decimal  # quote currency
    status: GridStatus = GridStatus.PENDING
    buy_ref: Optional[str] = None
    sell_ref: Optional[str] = None
    buy_price: Optional[Decimal] = None

    @property
    def base_amount(self) -> Decimal:
        """Base units bought at this level"""
        return self.amount / self.price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price": str(self.price),
            "amount": str(self.amount),
            "status": self.status.value,
            "buy_ref": self.buy_ref,
            "sell_ref": self.sell_ref,
            "buy_price": _str_or_none(self.buy_price),
        }


@dataclass
class TradeRecord:
    """
    Trace d'un swap terminé (succès ou échec définitif).

    Append-only: écrit une seule fois par tentative.
    """
    type: TradeType
    token_from: str
    token_to: str
    amount_in: Decimal
    status: TradeStatus
    source: TradeSource = TradeSource.BOT
    strategy_kind: Optional[StrategyKind] = None
    bot_id: Optional[str] = None
    amount_out: Optional[Decimal] = None
    price: Optional[Decimal] = None
    tx_ref: Optional[str] = None
    error: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def success(self) -> bool:
        return self.status == TradeStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "source": self.source.value,
            "strategy_kind": self.strategy_kind.value if self.strategy_kind else None,
            "bot_id": self.bot_id,
            "token_from": self.token_from,
            "token_to": self.token_to,
            "amount_in": str(self.amount_in),
            "amount_out": _str_or_none(self.amount_out),
            "price": _str_or_none(self.price),
            "tx_ref": self.tx_ref,
            "status": self.status.value,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeRecord":
        kind = data.get("strategy_kind")
        return cls(
            id=data.get("id") or uuid.uuid4().hex[:12],
            type=TradeType(data["type"]),
            source=TradeSource(data.get("source", "bot")),
            strategy_kind=StrategyKind(kind) if kind else None,
            bot_id=data.get("bot_id"),
            token_from=data["token_from"],
            token_to=data["token_to"],
            amount_in=Decimal(data["amount_in"]),
            amount_out=_decimal_or_none(data.get("amount_out")),
            price=_decimal_or_none(data.get("price")),
            tx_ref=data.get("tx_ref"),
            status=TradeStatus(data.get("status", "success")),
            error=data.get("error"),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.utcnow(),
        )


def empty_bot_stats() -> Dict[str, Any]:
    return {
        "total_trades": 0,
        "success_trades": 0,
        "failed_trades": 0,
        "total_volume": "0",
        "running_time": 0,
    }


@dataclass
class Bot:
    """
    Bot persistant: une stratégie + sa configuration.

    `config` n'est modifiable que lorsque le bot est arrêté.
    """
    name: str
    strategy_kind: StrategyKind
    config: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"bot-{uuid.uuid4().hex[:8]}")
    is_running: bool = False
    stats: Dict[str, Any] = field(default_factory=empty_bot_stats)
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "strategy_kind": self.strategy_kind.value,
            "config": dict(self.config),
            "is_running": self.is_running,
            "stats": dict(self.stats),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bot":
        stats = empty_bot_stats()
        stats.update(data.get("stats") or {})
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            strategy_kind=StrategyKind(data["strategy_kind"]),
            config=dict(data.get("config") or {}),
            is_running=data.get("is_running", False),
            stats=stats,
            created_at=data.get("created_at") or datetime.utcnow().isoformat(),
        )
