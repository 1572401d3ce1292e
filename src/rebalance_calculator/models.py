import math
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, computed_field
from broker_connector_base import OrderIntent


class Position(BaseModel):
    """One wallet line: a security or a cash balance, valued in home currency"""
    ticker: str
    figi: Optional[str] = None
    currency: str = 'RUB'
    is_cash: bool = False
    amount: float = 0.0  # shares held, or cash units
    lot_size: int = Field(default=1, ge=1)
    price: float = 0.0  # per share, home currency
    lot_price: float = 0.0  # per lot, home currency
    current_value: float = 0.0
    average_position_price: Optional[float] = None
    average_position_price_fifo: Optional[float] = None
    current_percent: float = 0.0
    desired_percent: float = 0.0
    desired_amount: float = 0.0
    desired_lots: int = 0
    to_buy_lots: float = 0.0  # signed, fractional until rounded
    to_buy_amount: float = 0.0
    is_margin: bool = False

    @property
    def current_lots(self) -> float:
        return self.amount / self.lot_size


class NumSharesSource(str, Enum):
    """Fallback tier that supplied the share count"""
    LIST = 'list'
    ETF_BY = 'etfBy'
    ASSET = 'asset'


class MarketCapInfo(BaseModel):
    ticker: str
    figi: str
    num_shares: float
    num_shares_source: NumSharesSource
    last_price_in_home_currency: float

    @computed_field
    @property
    def market_cap_in_home_currency(self) -> float:
        return self.num_shares * self.last_price_in_home_currency


class AumInfo(BaseModel):
    amount: float
    currency: str = 'RUB'


class InstrumentMetrics(BaseModel):
    """Resolved metrics in home currency; None means unresolved"""
    market_cap: Optional[float] = None
    aum: Optional[float] = None


class MarginTarget(BaseModel):
    ticker: str
    weight: float
    desired_amount: float
    is_margin: bool = False


class MarginDecision(BaseModel):
    """Whether excess margin in current holdings is unwound this iteration"""
    should_unwind: bool = False
    is_last_balance: bool = False
    margin_in_use: float = 0.0
    reason: str = ''


class ProfitInfo(BaseModel):
    profit_amount: float
    profit_percent: float


class FundingSell(BaseModel):
    ticker: str
    lots: int
    amount: float


class FundingPlan(BaseModel):
    """Sells that raise cash for instruments that may not be bought on margin"""
    required_funds: Dict[str, float] = Field(default_factory=dict)
    funds_needed: float = 0.0
    sells: List[FundingSell] = Field(default_factory=list)
    shortfall: float = 0.0


class ExecutionPhase(BaseModel):
    name: str
    intents: List[OrderIntent] = Field(default_factory=list)
    wait_for_completion: bool = False


class OrderPlan(BaseModel):
    """Calculated orders of one iteration, ready for the sequencer"""
    positions: List[Position] = Field(default_factory=list)
    intents: List[OrderIntent] = Field(default_factory=list)
    phases: List[ExecutionPhase] = Field(default_factory=list)
    dropped_by_profit_filter: List[str] = Field(default_factory=list)
    funding: Optional[FundingPlan] = None
    warnings: List[str] = Field(default_factory=list)


def is_finite_number(value) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)
