from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from app_config import AccountConfig, AppConfig, BrokerConfig, set_config
from broker_connector_base import (
    AssetInfo,
    BrokerAccount,
    BrokerAPIError,
    BrokerClient,
    Instrument,
    MoneyBalance,
    OrderResult,
    OrderStatus,
    PortfolioSnapshot,
    TradingDay,
)

# Tuesday, 12:00 Moscow time
FIXED_NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


def open_session(now: datetime = FIXED_NOW) -> List[TradingDay]:
    return [TradingDay(
        is_trading_day=True,
        start_time=now - timedelta(hours=3),
        end_time=now + timedelta(hours=6),
    )]


class FakeBroker(BrokerClient):
    """In-memory broker; records every posted order"""

    def __init__(self, instruments: Optional[Dict[str, List[Instrument]]] = None,
                 prices: Optional[Dict[str, float]] = None,
                 portfolio: Optional[PortfolioSnapshot] = None,
                 accounts: Optional[List[BrokerAccount]] = None,
                 schedule: Optional[List[TradingDay]] = None):
        self.instruments = instruments or {}
        self.prices = prices or {}
        self.portfolio = portfolio or PortfolioSnapshot(account_id='ACC')
        self.accounts = accounts if accounts is not None else [BrokerAccount(id='ACC', name='Main', type=1)]
        self.schedule = schedule if schedule is not None else open_session()
        self.schedule_error: Optional[Exception] = None
        self.etfs: Dict[str, Instrument] = {}
        self.assets: Dict[str, AssetInfo] = {}
        self.failing_figis = set()
        self.post_status = OrderStatus.NEW
        self.order_state = OrderStatus.FILLED
        self.posted = []
        self.connected = False

    async def connect(self) -> bool:
        self.connected = True
        return True

    async def disconnect(self):
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    async def get_accounts(self) -> List[BrokerAccount]:
        return self.accounts

    async def get_portfolio(self, account_id: str) -> PortfolioSnapshot:
        return self.portfolio

    async def get_last_price(self, figi: str) -> Optional[float]:
        return self.prices.get(figi)

    async def list_instruments(self, instrument_type) -> List[Instrument]:
        return list(self.instruments.get(instrument_type, []))

    async def get_etf_by_figi(self, figi: str) -> Optional[Instrument]:
        return self.etfs.get(figi)

    async def get_asset_by(self, asset_uid: str) -> Optional[AssetInfo]:
        return self.assets.get(asset_uid)

    async def get_trading_schedule(self, exchange, start, end) -> List[TradingDay]:
        if self.schedule_error is not None:
            raise self.schedule_error
        return self.schedule

    async def post_order(self, account_id, figi, lots, direction, order_id) -> OrderResult:
        if figi in self.failing_figis:
            raise BrokerAPIError("Not enough balance", status=400, code="30042")
        self.posted.append((figi, lots, direction))
        return OrderResult(order_id=order_id, figi=figi, lots=lots, direction=direction, status=self.post_status)

    async def get_order_state(self, account_id, order_id) -> str:
        return self.order_state


async def no_sleep(seconds: float):
    return None


@pytest.fixture
def app_config():
    config = AppConfig(broker=BrokerConfig(post_completion_delay_seconds=0.0))
    set_config(config)
    return config


@pytest.fixture
def make_account():
    def _make(**overrides) -> AccountConfig:
        values = {
            'id': 'main',
            't_invest_token': 't.test-token',
            'account_id': 'ACC',
            'desired_wallet': {'TRUR': 50, 'TMOS': 50},
            'sleep_between_orders_seconds': 0,
        }
        values.update(overrides)
        return AccountConfig(**values)
    return _make


@pytest.fixture
def etf_broker():
    """Two 100 RUB ETFs, 10,000 RUB cash, nothing held"""
    return FakeBroker(
        instruments={
            'etf': [
                Instrument(ticker='TRUR', figi='F_TRUR', lot=1, instrument_type='etf'),
                Instrument(ticker='TMOS', figi='F_TMOS', lot=1, instrument_type='etf'),
            ]
        },
        prices={'F_TRUR': 100.0, 'F_TMOS': 100.0},
        portfolio=PortfolioSnapshot(account_id='ACC', money=[MoneyBalance(currency='RUB', amount=10000.0)]),
    )
