# tradesync/datastructures.py
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Literal, Mapping, Optional, Tuple

from tradesync.instruments import contract_size_for

Side = Literal['BUY', 'SELL']


def _to_float(value: Any, default: Optional[float] = 0.0) -> Optional[float]:
    if value is None or value == '':
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _optional_price(value: Any) -> Optional[float]:
    """SL/TP and trigger prices: missing, null and zero all mean 'not set'."""
    price = _to_float(value, default=None)
    return price if price else None


def _to_datetime(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None


@dataclass(frozen=True)
class Quote:
    """Latest bid/ask for one symbol. A zero or missing side means 'no market'."""
    symbol: str
    bid: float
    ask: float
    received_at: float = 0.0 # time.monotonic() of the poll that delivered it

    @classmethod
    def from_dict(cls, symbol: str, data: Mapping[str, Any] | None, received_at: float = 0.0) -> Optional['Quote']:
        """Builds a quote from a batch price entry, or None when it carries no bid."""
        if not data:
            return None
        bid = _to_float(data.get('bid'), default=None)
        if not bid:
            return None
        ask = _to_float(data.get('ask'), default=None) or bid
        return cls(symbol=symbol, bid=bid, ask=ask, received_at=received_at)

    @property
    def spread(self) -> float:
        return self.ask - self.bid

    @property
    def is_valid(self) -> bool:
        return self.bid > 0 and self.ask > 0

    def age(self, now: Optional[float] = None) -> float:
        return (time.monotonic() if now is None else now) - self.received_at

    def is_stale(self, max_age: float, now: Optional[float] = None) -> bool:
        return self.age(now) > max_age

    def to_dict(self) -> Dict[str, float]:
        return {'bid': self.bid, 'ask': self.ask}


def _trade_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Maps the fields shared by open, pending and closed trades."""
    symbol = data.get('symbol', '')
    side = data['side']
    if side not in ('BUY', 'SELL'):
        raise ValueError(f"Unknown trade side: {side!r}")
    stop_loss = data.get('stopLoss')
    take_profit = data.get('takeProfit')
    return {
        'id': str(data.get('_id') or data.get('id') or ''),
        'account_id': str(data.get('tradingAccountId') or ''),
        'symbol': symbol,
        'side': side,
        'quantity': _to_float(data.get('quantity')),
        'open_price': _to_float(data.get('openPrice')),
        'contract_size': _to_float(data.get('contractSize'), default=None) or contract_size_for(symbol),
        'leverage': str(data.get('leverage') or ''),
        'margin_used': _to_float(data.get('marginUsed')),
        'stop_loss': _optional_price(stop_loss if stop_loss is not None else data.get('sl')),
        'take_profit': _optional_price(take_profit if take_profit is not None else data.get('tp')),
        'commission': _to_float(data.get('commission')),
        'swap': _to_float(data.get('swap')),
        'opened_at': _to_datetime(data.get('openedAt')),
        'trade_ref': str(data.get('tradeId') or ''),
        'order_type': data.get('orderType', 'MARKET'),
    }


@dataclass(frozen=True)
class Position:
    """An executed order that is still open. Server-authoritative; never mutated locally."""
    id: str
    account_id: str
    symbol: str
    side: Side
    quantity: float
    open_price: float
    contract_size: float
    leverage: str = ''
    margin_used: float = 0.0
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    commission: float = 0.0
    swap: float = 0.0
    opened_at: Optional[datetime] = None
    trade_ref: str = ''
    order_type: str = 'MARKET'

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Position':
        return cls(**_trade_fields(data))


@dataclass(frozen=True)
class PendingOrder(Position):
    """A limit/stop order waiting for its trigger price."""
    trigger_price: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'PendingOrder':
        return cls(**_trade_fields(data), trigger_price=_optional_price(data.get('pendingPrice')))


@dataclass(frozen=True)
class ClosedTrade(Position):
    """A trade from the account history."""
    close_price: Optional[float] = None
    realized_pnl: float = 0.0
    closed_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'ClosedTrade':
        return cls(
            **_trade_fields(data),
            close_price=_to_float(data.get('closePrice'), default=None),
            realized_pnl=_to_float(data.get('realizedPnl')),
            closed_at=_to_datetime(data.get('closedAt')),
        )


@dataclass(frozen=True)
class AccountSummary:
    """Server view of an account. Only balance and credit feed the client-side metrics."""
    balance: float = 0.0
    credit: float = 0.0
    equity: float = 0.0
    free_margin: float = 0.0
    used_margin: float = 0.0
    floating_pnl: float = 0.0
    margin_level: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> 'AccountSummary':
        data = data or {}
        return cls(
            balance=_to_float(data.get('balance')),
            credit=_to_float(data.get('credit')),
            equity=_to_float(data.get('equity')),
            free_margin=_to_float(data.get('freeMargin')),
            used_margin=_to_float(data.get('usedMargin')),
            floating_pnl=_to_float(data.get('floatingPnl')),
            margin_level=_to_float(data.get('marginLevel')),
        )


@dataclass(frozen=True)
class TradingAccount:
    id: str
    number: str = ''
    leverage: str = ''
    balance: float = 0.0
    credit: float = 0.0
    status: str = 'Active'

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'TradingAccount':
        return cls(
            id=str(data.get('_id') or data.get('id') or ''),
            number=str(data.get('accountId') or ''),
            leverage=str(data.get('leverage') or ''),
            balance=_to_float(data.get('balance')),
            credit=_to_float(data.get('credit')),
            status=data.get('status', 'Active'),
        )


@dataclass(frozen=True)
class AccountSnapshot:
    """
    Everything polled for one account. Replaced as a whole on every write so
    that readers never see collections belonging to different accounts.
    """
    account_id: Optional[str] = None
    positions: Tuple[Position, ...] = ()
    pending_orders: Tuple[PendingOrder, ...] = ()
    history: Tuple[ClosedTrade, ...] = ()
    summary: AccountSummary = field(default_factory=AccountSummary)


@dataclass(frozen=True)
class AccountMetrics:
    """Client-side real-time values derived from quotes, positions and the summary."""
    total_floating_pnl: float = 0.0
    equity: float = 0.0
    free_margin: float = 0.0
    used_margin: float = 0.0
    margin_level: float = 0.0
    position_pnl: Mapping[str, float] = field(default_factory=dict)


@dataclass
class OrderRequest:
    """Represents an order the user wants to open."""
    symbol: str
    side: Side
    quantity: float
    order_type: Literal['MARKET', 'PENDING'] = 'MARKET'
    pending_type: Literal['LIMIT', 'STOP'] = 'LIMIT'
    trigger_price: Optional[float] = None # Required for PENDING orders
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    leverage: Optional[str] = None # Defaults to the selected account's leverage

    @property
    def is_pending(self) -> bool:
        return self.order_type == 'PENDING'

    @property
    def wire_order_type(self) -> str:
        return f"{self.side}_{self.pending_type}" if self.is_pending else 'MARKET'


@dataclass
class ActionResult:
    """Outcome of a user-initiated action, ready to be shown as a toast."""
    success: bool
    message: str
    realized_pnl: Optional[float] = None
    closed: int = 0
    cancelled: int = 0
