from .base_client import BrokerClient
from .base_rebalancer import BaseRebalancer, IterationSnapshotStore
from .models import (
    # Instrument models
    Instrument,
    InstrumentType,
    AssetInfo,
    BrokerAccount,
    # Portfolio models
    AccountPosition,
    MoneyBalance,
    PortfolioSnapshot,
    TradingDay,
    # Order models
    OrderDirection,
    OrderIntent,
    OrderResult,
    OrderStatus,
    # Iteration result models
    FailedOrder,
    IterationResult,
)
from .exceptions import (
    BrokerConnectionError,
    BrokerAPIError,
    OrderExecutionError,
)

__version__ = "1.0.0"

__all__ = [
    "BrokerClient",
    "BaseRebalancer",
    "IterationSnapshotStore",
    "Instrument",
    "InstrumentType",
    "AssetInfo",
    "BrokerAccount",
    "AccountPosition",
    "MoneyBalance",
    "PortfolioSnapshot",
    "TradingDay",
    "OrderDirection",
    "OrderIntent",
    "OrderResult",
    "OrderStatus",
    "FailedOrder",
    "IterationResult",
    "BrokerConnectionError",
    "BrokerAPIError",
    "OrderExecutionError",
    "__version__",
]
