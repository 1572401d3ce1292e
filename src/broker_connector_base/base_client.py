from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional
from .models import (
    AssetInfo,
    BrokerAccount,
    Instrument,
    InstrumentType,
    OrderDirection,
    OrderResult,
    PortfolioSnapshot,
    TradingDay,
)

class BrokerClient(ABC):
    """Abstract base class for broker API clients"""

    @abstractmethod
    async def connect(self) -> bool:
        """Open the transport session"""
        pass

    @abstractmethod
    async def disconnect(self):
        """Close the transport session"""
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the transport session is open"""
        pass

    @abstractmethod
    async def get_accounts(self) -> List[BrokerAccount]:
        """List accounts visible to the token"""
        pass

    @abstractmethod
    async def get_portfolio(self, account_id: str) -> PortfolioSnapshot:
        """Get securities and money balances of an account"""
        pass

    @abstractmethod
    async def get_last_price(self, figi: str) -> Optional[float]:
        """Last trade price per share, None when the broker has none"""
        pass

    @abstractmethod
    async def list_instruments(self, instrument_type: InstrumentType) -> List[Instrument]:
        """List all instruments of one type"""
        pass

    @abstractmethod
    async def get_etf_by_figi(self, figi: str) -> Optional[Instrument]:
        """Detailed ETF card, used when the listing omits num_shares"""
        pass

    @abstractmethod
    async def get_asset_by(self, asset_uid: str) -> Optional[AssetInfo]:
        """Asset card, last resort for share counts"""
        pass

    @abstractmethod
    async def get_trading_schedule(self, exchange: str, start: datetime, end: datetime) -> List[TradingDay]:
        """Trading sessions of an exchange within [start, end]"""
        pass

    @abstractmethod
    async def post_order(
        self,
        account_id: str,
        figi: str,
        lots: int,
        direction: OrderDirection,
        order_id: str
    ) -> OrderResult:
        """Submit a market order"""
        pass

    @abstractmethod
    async def get_order_state(self, account_id: str, order_id: str) -> str:
        """Current normalized status of an order (see OrderStatus)"""
        pass
