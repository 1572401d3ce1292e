from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Literal
from pydantic import BaseModel, Field

InstrumentType = Literal['share', 'etf', 'bond', 'currency', 'future']


# Instrument metadata
class Instrument(BaseModel):
    """Tradable instrument as listed by the broker"""
    ticker: str
    figi: str
    uid: str = ''
    lot: int = Field(default=1, ge=1)
    currency: str = 'RUB'
    instrument_type: InstrumentType = 'share'
    name: str = ''
    class_code: str = ''
    asset_uid: Optional[str] = None
    num_shares: Optional[float] = None  # ETFs: units outstanding, None when the listing omits it
    issue_size: Optional[float] = None  # Shares: issue size, None when the listing omits it


class AssetInfo(BaseModel):
    """Subset of the broker's asset card used for share-count fallback"""
    asset_uid: str
    etf_num_shares: Optional[float] = None
    share_issue_size: Optional[float] = None


class BrokerAccount(BaseModel):
    id: str
    name: str = ''
    type: int = 0  # 1 = brokerage, 2 = IIS
    status: int = 0


# Portfolio models
class AccountPosition(BaseModel):
    """Security held in the account"""
    figi: str
    instrument_type: str = ''
    quantity: float  # in shares, not lots
    current_price: Optional[float] = None
    average_position_price: Optional[float] = None
    average_position_price_fifo: Optional[float] = None
    currency: str = 'RUB'


class MoneyBalance(BaseModel):
    currency: str
    amount: float


class PortfolioSnapshot(BaseModel):
    """Holdings and cash of one account"""
    account_id: str
    positions: List[AccountPosition] = Field(default_factory=list)
    money: List[MoneyBalance] = Field(default_factory=list)


# Trading schedule
class TradingDay(BaseModel):
    is_trading_day: bool = True
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    evening_start_time: Optional[datetime] = None
    evening_end_time: Optional[datetime] = None


# Order models
class OrderDirection(str, Enum):
    BUY = 'buy'
    SELL = 'sell'


class OrderIntent(BaseModel):
    """One market order the rebalancer intends to submit"""
    ticker: str
    figi: str
    direction: OrderDirection
    lots: int = Field(ge=1)
    lot_price: float = 0.0
    is_margin: bool = False
    order_id: Optional[str] = None

    @property
    def estimated_value(self) -> float:
        return self.lots * self.lot_price


class OrderResult(BaseModel):
    """Broker acknowledgement of a submitted order"""
    order_id: str
    figi: str
    lots: int
    direction: OrderDirection
    status: str


class OrderStatus:
    """Normalized order statuses"""
    FILLED = "FILLED"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    NEW = "NEW"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    NOT_FOUND = "NOT_FOUND"

    TERMINAL = frozenset({FILLED, CANCELLED, REJECTED})
    FAILED = frozenset({CANCELLED, REJECTED})


# Iteration result
class FailedOrder(BaseModel):
    intent: OrderIntent
    error: str


class IterationResult(BaseModel):
    """Outcome of one rebalancing iteration for one account"""
    account_id: str
    orders_submitted: List[OrderIntent] = Field(default_factory=list)
    planned_orders: List[OrderIntent] = Field(default_factory=list)
    failed_orders: List[FailedOrder] = Field(default_factory=list)
    skipped: bool = False
    dry_run: bool = False
    reason: Optional[str] = None
    exchange_open: Optional[bool] = None
    target_weights: Dict[str, float] = Field(default_factory=dict)
    before_shares: Dict[str, float] = Field(default_factory=dict)
    after_shares: Dict[str, float] = Field(default_factory=dict)
    target_shares: Dict[str, float] = Field(default_factory=dict)
    total_capital: float = 0.0
    cash_balance: Optional[float] = None
    success: bool = True
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    finished_at: datetime = Field(default_factory=datetime.now)
