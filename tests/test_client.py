from datetime import datetime, timezone

import pytest

from app_config import BrokerConfig
from broker_connector_base import BrokerAPIError, OrderDirection, OrderExecutionError, OrderStatus
from tinvest_connector import TInvestClient


class ScriptedClient(TInvestClient):
    """TInvestClient with canned gateway responses keyed by 'Service/Method'"""

    def __init__(self, responses):
        super().__init__('t.test-token', BrokerConfig())
        self.responses = responses
        self.calls = []

    async def _call(self, service, method, payload=None):
        self.calls.append((f"{service}/{method}", payload))
        response = self.responses[f"{service}/{method}"]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.mark.asyncio
async def test_accounts_map_type_enum():
    client = ScriptedClient({'UsersService/GetAccounts': {'accounts': [
        {'id': '2001', 'name': 'ИИС', 'type': 'ACCOUNT_TYPE_TINKOFF_IIS'},
        {'id': '2002', 'name': 'Брокерский', 'type': 'ACCOUNT_TYPE_TINKOFF'},
    ]}})
    accounts = await client.get_accounts()
    assert [(a.id, a.type) for a in accounts] == [('2001', 2), ('2002', 1)]


@pytest.mark.asyncio
async def test_portfolio_separates_cash_from_securities():
    client = ScriptedClient({
        'OperationsService/GetPortfolio': {'positions': [
            {
                'figi': 'BBG333333333',
                'instrumentType': 'etf',
                'quantity': {'units': '120', 'nano': 0},
                'currentPrice': {'currency': 'rub', 'units': '7', 'nano': 150000000},
                'averagePositionPrice': {'currency': 'rub', 'units': '6', 'nano': 0},
                'averagePositionPriceFifo': {'currency': 'rub', 'units': '6', 'nano': 500000000},
            },
            {'figi': 'RUB000UTSTOM', 'instrumentType': 'currency', 'quantity': {'units': '1000'}},
        ]},
        'OperationsService/GetPositions': {'money': [
            {'currency': 'rub', 'units': '1000', 'nano': 500000000},
            {'currency': 'usd', 'units': '3', 'nano': 0},
        ]},
    })

    portfolio = await client.get_portfolio('2002')

    assert len(portfolio.positions) == 1
    position = portfolio.positions[0]
    assert position.quantity == 120
    assert position.current_price == pytest.approx(7.15)
    assert position.average_position_price_fifo == pytest.approx(6.5)
    assert [(m.currency, m.amount) for m in portfolio.money] == [('RUB', 1000.5), ('USD', 3.0)]


@pytest.mark.asyncio
async def test_instrument_listing():
    client = ScriptedClient({'InstrumentsService/Etfs': {'instruments': [{
        'ticker': 'TMOS', 'figi': 'BBG333333333', 'lot': 1, 'currency': 'rub',
        'classCode': 'TQTF', 'assetUid': 'asset-1', 'numShares': {'units': '0', 'nano': 0},
    }]}})

    [instrument] = await client.list_instruments('etf')

    assert instrument.currency == 'RUB'
    assert instrument.instrument_type == 'etf'
    assert instrument.num_shares == 0.0
    assert client.calls[0][1] == {'instrumentStatus': 'INSTRUMENT_STATUS_BASE'}


@pytest.mark.asyncio
async def test_asset_share_counts():
    client = ScriptedClient({'InstrumentsService/GetAssetBy': {'asset': {
        'security': {'etf': {'numShare': {'units': '5000', 'nano': 0}}},
    }}})
    asset = await client.get_asset_by('asset-1')
    assert asset.etf_num_shares == 5000.0
    assert asset.share_issue_size is None


@pytest.mark.asyncio
async def test_trading_schedule():
    client = ScriptedClient({'InstrumentsService/TradingSchedules': {'exchanges': [{'days': [{
        'isTradingDay': True,
        'startTime': '2026-03-10T06:50:00Z',
        'endTime': '2026-03-10T15:39:59.123456789Z',
        'eveningStartTime': '2026-03-10T16:05:00Z',
        'eveningEndTime': '2026-03-10T20:49:59Z',
    }, {
        'date': '2026-03-11T00:00:00Z',
    }]}]}})

    days = await client.get_trading_schedule(
        'MOEX', datetime(2026, 3, 10, tzinfo=timezone.utc), datetime(2026, 3, 11, tzinfo=timezone.utc)
    )

    assert days[0].start_time == datetime(2026, 3, 10, 6, 50, tzinfo=timezone.utc)
    assert days[0].evening_end_time.hour == 20
    # missing flag is not a closure
    assert days[1].is_trading_day
    assert client.calls[0][1]['from'] == '2026-03-10T00:00:00.000000Z'


@pytest.mark.asyncio
async def test_post_market_order():
    client = ScriptedClient({'OrdersService/PostOrder': {
        'orderId': 'broker-1', 'executionReportStatus': 'EXECUTION_REPORT_STATUS_FILL',
    }})

    result = await client.post_order('2002', 'BBG333333333', 3, OrderDirection.SELL, 'client-1')

    assert result.order_id == 'broker-1'
    assert result.status == OrderStatus.FILLED
    payload = client.calls[0][1]
    assert payload['quantity'] == '3'
    assert payload['direction'] == 'ORDER_DIRECTION_SELL'
    assert payload['orderType'] == 'ORDER_TYPE_MARKET'
    assert payload['orderId'] == 'client-1'


@pytest.mark.asyncio
async def test_post_order_rejects_zero_lots():
    with pytest.raises(OrderExecutionError):
        await ScriptedClient({}).post_order('2002', 'BBG333333333', 0, OrderDirection.BUY, 'client-1')


@pytest.mark.asyncio
async def test_unknown_order_is_not_found():
    client = ScriptedClient({'OrdersService/GetOrderState': BrokerAPIError("order not found", status=404)})
    assert await client.get_order_state('2002', 'broker-1') == OrderStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_other_api_errors_propagate():
    client = ScriptedClient({'OrdersService/GetOrderState': BrokerAPIError("unauthenticated", status=401)})
    with pytest.raises(BrokerAPIError):
        await client.get_order_state('2002', 'broker-1')
