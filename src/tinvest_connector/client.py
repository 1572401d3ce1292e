"""T-Invest REST gateway client"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp

import broker_connector_base
from broker_connector_base import (
    AccountPosition,
    AssetInfo,
    BrokerAccount,
    BrokerAPIError,
    BrokerClient,
    BrokerConnectionError,
    Instrument,
    InstrumentType,
    MoneyBalance,
    OrderDirection,
    OrderExecutionError,
    OrderResult,
    OrderStatus,
    PortfolioSnapshot,
    TradingDay,
)
from app_config import BrokerConfig, get_config
from .models import format_timestamp, money_currency, parse_timestamp, quotation_to_float

CONTRACT_PREFIX = "tinkoff.public.invest.api.contract.v1"

ACCOUNT_TYPES = {
    "ACCOUNT_TYPE_UNSPECIFIED": 0,
    "ACCOUNT_TYPE_TINKOFF": 1,
    "ACCOUNT_TYPE_TINKOFF_IIS": 2,
    "ACCOUNT_TYPE_INVEST_BOX": 3,
}

INSTRUMENT_METHODS: Dict[str, str] = {
    'share': 'Shares',
    'etf': 'Etfs',
    'bond': 'Bonds',
    'currency': 'Currencies',
    'future': 'Futures',
}

EXECUTION_STATUSES = {
    "EXECUTION_REPORT_STATUS_FILL": OrderStatus.FILLED,
    "EXECUTION_REPORT_STATUS_PARTIALLYFILL": OrderStatus.PARTIALLY_FILLED,
    "EXECUTION_REPORT_STATUS_NEW": OrderStatus.NEW,
    "EXECUTION_REPORT_STATUS_CANCELLED": OrderStatus.CANCELLED,
    "EXECUTION_REPORT_STATUS_REJECTED": OrderStatus.REJECTED,
}


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class TInvestClient(BrokerClient):
    """Broker client over the T-Invest REST gateway, one session per token"""

    def __init__(self, token: str, broker_config: Optional[BrokerConfig] = None,
                 logger: Optional[logging.Logger] = None):
        self.config = broker_config or get_config().broker
        self.token = token
        self.logger = logger or logging.getLogger(__name__)
        self._session: Optional[aiohttp.ClientSession] = None

        self.logger.debug(
            f"Initializing TInvestClient with broker-connector-base v{broker_connector_base.__version__}"
        )

    async def connect(self) -> bool:
        """Open the HTTP session"""
        if self.is_connected():
            return True
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds),
            headers={
                'Authorization': f'Bearer {self.token}',
                'x-app-name': self.config.app_name,
                'Content-Type': 'application/json',
                'Accept': 'application/json',
            }
        )
        self.logger.debug(f"Opened session to {self.config.base_url}")
        return True

    async def disconnect(self):
        """Close the HTTP session"""
        try:
            if self._session and not self._session.closed:
                await self._session.close()
                self.logger.debug("Closed T-Invest session")
        except Exception as e:
            self.logger.error(f"Error closing session: {e}")
        finally:
            self._session = None

    def is_connected(self) -> bool:
        return self._session is not None and not self._session.closed

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.disconnect()

    async def _call(self, service: str, method: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """POST one unary RPC to the gateway and return the decoded JSON body"""
        if not self.is_connected():
            await self.connect()

        url = f"{self.config.base_url.rstrip('/')}/{CONTRACT_PREFIX}.{service}/{method}"
        try:
            async with self._session.post(url, json=payload or {}) as response:
                if response.status != 200:
                    body = await response.text()
                    message = body
                    code = None
                    try:
                        data = await response.json(content_type=None)
                        message = data.get('message') or data.get('description') or body
                        code = str(data.get('code')) if data.get('code') is not None else None
                    except ValueError:
                        pass
                    raise BrokerAPIError(f"{service}/{method} returned {response.status}: {message}",
                                         status=response.status, code=code)
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise BrokerConnectionError(f"{service}/{method} transport error: {e}") from e
        except TimeoutError as e:
            raise BrokerConnectionError(f"{service}/{method} timed out") from e

    # Accounts and portfolio

    async def get_accounts(self) -> List[BrokerAccount]:
        data = await self._call("UsersService", "GetAccounts")
        accounts = []
        for item in data.get('accounts', []):
            raw_type = item.get('type')
            account_type = ACCOUNT_TYPES.get(raw_type, _to_int(raw_type)) if raw_type is not None else 0
            accounts.append(BrokerAccount(
                id=str(item.get('id', '')),
                name=item.get('name', ''),
                type=account_type,
                status=item.get('status') if isinstance(item.get('status'), int) else 0
            ))
        return accounts

    async def get_portfolio(self, account_id: str) -> PortfolioSnapshot:
        portfolio = await self._call("OperationsService", "GetPortfolio", {"accountId": account_id, "currency": "RUB"})
        positions_data = await self._call("OperationsService", "GetPositions", {"accountId": account_id})

        positions = []
        for item in portfolio.get('positions', []):
            if item.get('instrumentType') == 'currency':
                # Cash is taken from GetPositions money balances
                continue
            quantity = quotation_to_float(item.get('quantity'))
            positions.append(AccountPosition(
                figi=item.get('figi', ''),
                instrument_type=item.get('instrumentType', ''),
                quantity=quantity or 0.0,
                current_price=quotation_to_float(item.get('currentPrice')),
                average_position_price=quotation_to_float(item.get('averagePositionPrice')),
                average_position_price_fifo=quotation_to_float(item.get('averagePositionPriceFifo')),
                currency=money_currency(item.get('currentPrice'))
            ))

        money = [
            MoneyBalance(currency=money_currency(m), amount=quotation_to_float(m) or 0.0)
            for m in positions_data.get('money', [])
        ]
        return PortfolioSnapshot(account_id=account_id, positions=positions, money=money)

    # Market data

    async def get_last_price(self, figi: str) -> Optional[float]:
        data = await self._call("MarketDataService", "GetLastPrices", {"figi": [figi]})
        for item in data.get('lastPrices', []):
            if item.get('figi') in (None, figi):
                return quotation_to_float(item.get('price'))
        return None

    # Instruments

    @staticmethod
    def _parse_instrument(item: Dict[str, Any], instrument_type: InstrumentType) -> Instrument:
        issue_size = item.get('issueSize')
        return Instrument(
            ticker=item.get('ticker', ''),
            figi=item.get('figi', ''),
            uid=item.get('uid', ''),
            lot=max(1, _to_int(item.get('lot')) or 1),
            currency=str(item.get('currency', 'rub')).upper(),
            instrument_type=instrument_type,
            name=item.get('name', ''),
            class_code=item.get('classCode', ''),
            asset_uid=item.get('assetUid') or None,
            num_shares=quotation_to_float(item.get('numShares')),
            issue_size=float(issue_size) if issue_size not in (None, '') else None
        )

    async def list_instruments(self, instrument_type: InstrumentType) -> List[Instrument]:
        method = INSTRUMENT_METHODS[instrument_type]
        data = await self._call("InstrumentsService", method, {"instrumentStatus": "INSTRUMENT_STATUS_BASE"})
        return [self._parse_instrument(item, instrument_type) for item in data.get('instruments', [])]

    async def get_etf_by_figi(self, figi: str) -> Optional[Instrument]:
        data = await self._call("InstrumentsService", "EtfBy", {"idType": "INSTRUMENT_ID_TYPE_FIGI", "id": figi})
        item = data.get('instrument')
        return self._parse_instrument(item, 'etf') if item else None

    async def get_asset_by(self, asset_uid: str) -> Optional[AssetInfo]:
        data = await self._call("InstrumentsService", "GetAssetBy", {"id": asset_uid})
        asset = data.get('asset')
        if not asset:
            return None
        security = asset.get('security') or {}
        etf = security.get('etf') or asset.get('etf') or {}
        share = security.get('share') or {}
        etf_num = etf.get('numShares', etf.get('numShare'))
        return AssetInfo(
            asset_uid=asset_uid,
            etf_num_shares=quotation_to_float(etf_num),
            share_issue_size=quotation_to_float(share.get('issueSize'))
        )

    async def get_trading_schedule(self, exchange: str, start: datetime, end: datetime) -> List[TradingDay]:
        data = await self._call("InstrumentsService", "TradingSchedules", {
            "exchange": exchange,
            "from": format_timestamp(start),
            "to": format_timestamp(end),
        })
        exchanges = data.get('exchanges', [])
        if not exchanges:
            return []
        days = []
        for day in exchanges[0].get('days', []):
            days.append(TradingDay(
                is_trading_day=day.get('isTradingDay') is not False,
                start_time=parse_timestamp(day.get('startTime')),
                end_time=parse_timestamp(day.get('endTime')),
                evening_start_time=parse_timestamp(day.get('eveningStartTime')),
                evening_end_time=parse_timestamp(day.get('eveningEndTime'))
            ))
        return days

    # Orders

    async def post_order(self, account_id: str, figi: str, lots: int,
                         direction: OrderDirection, order_id: str) -> OrderResult:
        """Submit a market order for whole lots"""
        if lots < 1:
            raise OrderExecutionError(f"Order for {figi} must be at least one lot, got {lots}")

        data = await self._call("OrdersService", "PostOrder", {
            "figi": figi,
            "quantity": str(lots),
            "direction": "ORDER_DIRECTION_BUY" if direction == OrderDirection.BUY else "ORDER_DIRECTION_SELL",
            "accountId": account_id,
            "orderType": "ORDER_TYPE_MARKET",
            "orderId": order_id,
        })
        status = EXECUTION_STATUSES.get(data.get('executionReportStatus'), OrderStatus.NEW)
        return OrderResult(
            order_id=str(data.get('orderId') or order_id),
            figi=figi,
            lots=lots,
            direction=direction,
            status=status
        )

    async def get_order_state(self, account_id: str, order_id: str) -> str:
        try:
            data = await self._call("OrdersService", "GetOrderState", {"accountId": account_id, "orderId": order_id})
        except BrokerAPIError as e:
            if e.status == 404:
                return OrderStatus.NOT_FOUND
            raise
        return EXECUTION_STATUSES.get(data.get('executionReportStatus'), OrderStatus.NEW)
