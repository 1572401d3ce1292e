from .calculator import RebalanceCalculator, calculate_position_profit
from .allocation import DesiredMode, compute_target_weights
from .margin import MarginCalculator
from .marginal_sell import MarginalSellPlanner
from .sequencing import (
    ExchangeClosureMode,
    ClosureDecision,
    parse_closure_mode,
    decide_closure,
    split_into_phases,
)
from .tickers import normalize_ticker, tickers_equal, normalize_wallet
from .models import (
    Position,
    NumSharesSource,
    MarketCapInfo,
    AumInfo,
    InstrumentMetrics,
    MarginTarget,
    MarginDecision,
    ProfitInfo,
    FundingSell,
    FundingPlan,
    ExecutionPhase,
    OrderPlan,
)

__version__ = "1.0.0"

__all__ = [
    "RebalanceCalculator",
    "calculate_position_profit",
    "DesiredMode",
    "compute_target_weights",
    "MarginCalculator",
    "MarginalSellPlanner",
    "ExchangeClosureMode",
    "ClosureDecision",
    "parse_closure_mode",
    "decide_closure",
    "split_into_phases",
    "normalize_ticker",
    "tickers_equal",
    "normalize_wallet",
    "Position",
    "NumSharesSource",
    "MarketCapInfo",
    "AumInfo",
    "InstrumentMetrics",
    "MarginTarget",
    "MarginDecision",
    "ProfitInfo",
    "FundingSell",
    "FundingPlan",
    "ExecutionPhase",
    "OrderPlan",
    "__version__",
]
