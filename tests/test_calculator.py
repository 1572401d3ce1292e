import math

import pytest

from broker_connector_base import OrderDirection, OrderIntent
from rebalance_calculator import (
    MarginTarget,
    Position,
    RebalanceCalculator,
    calculate_position_profit,
)


def security(ticker, lot_price=100.0, lot_size=1, amount=0.0, **fields) -> Position:
    price = lot_price / lot_size
    return Position(
        ticker=ticker,
        figi=f'F_{ticker}',
        lot_size=lot_size,
        price=price,
        lot_price=lot_price,
        amount=amount,
        current_value=amount * price,
        **fields
    )


def cash(amount, currency='RUB') -> Position:
    return Position(ticker=currency, currency=currency, is_cash=True, amount=amount,
                    price=1.0, lot_price=1.0, current_value=amount)


@pytest.fixture
def calculator():
    return RebalanceCalculator('RUB')


class TestBuildOrders:
    def test_fractional_buy_is_floored(self, calculator):
        intents = calculator.build_orders([security('TRUR', to_buy_lots=2.9)])
        assert len(intents) == 1
        assert intents[0].direction == OrderDirection.BUY
        assert intents[0].lots == 2

    def test_fractional_sell_is_floored(self, calculator):
        intents = calculator.build_orders([security('TRUR', amount=10, to_buy_lots=-3.2)])
        assert intents[0].direction == OrderDirection.SELL
        assert intents[0].lots == 3

    @pytest.mark.parametrize('to_buy_lots', [0.0, 0.99, -0.5, math.nan, math.inf])
    def test_no_intent_below_one_lot_or_non_finite(self, calculator, to_buy_lots):
        assert calculator.build_orders([security('TRUR', to_buy_lots=to_buy_lots)]) == []

    def test_home_currency_never_ordered(self, calculator):
        rub_line = cash(5_000.0)
        rub_line.to_buy_lots = 50
        rub_security = security('RUB', to_buy_lots=5)
        assert calculator.build_orders([rub_line, rub_security]) == []

    def test_position_without_figi_skipped(self, calculator):
        position = security('TRUR', to_buy_lots=5)
        position.figi = None
        assert calculator.build_orders([position]) == []

    def test_execution_order(self, calculator):
        positions = [
            security('SMALL_SELL', amount=10, to_buy_lots=-1, to_buy_amount=-100.0),
            security('CHEAP_BUY', lot_price=50.0, to_buy_lots=2, to_buy_amount=100.0),
            security('BIG_SELL', amount=10, to_buy_lots=-5, to_buy_amount=-500.0),
            security('PRICY_BUY', lot_price=900.0, to_buy_lots=1, to_buy_amount=900.0),
        ]
        tickers = [i.ticker for i in calculator.build_orders(positions)]
        assert tickers == ['BIG_SELL', 'SMALL_SELL', 'PRICY_BUY', 'CHEAP_BUY']


class TestCalculateDiff:
    def test_two_etf_scenario(self, calculator):
        positions = [cash(10_000.0), security('TRUR'), security('TMOS')]
        targets = [
            MarginTarget(ticker='TRUR', weight=50.0, desired_amount=5_000.0),
            MarginTarget(ticker='TMOS', weight=50.0, desired_amount=5_000.0),
        ]
        calculator.calculate_diff(positions, targets)
        intents = calculator.build_orders(positions)

        assert {i.ticker: i.lots for i in intents} == {'TRUR': 50, 'TMOS': 50}
        assert all(i.direction == OrderDirection.BUY for i in intents)
        assert sum(i.estimated_value for i in intents) == pytest.approx(10_000.0)

    def test_desired_lots_truncated(self, calculator):
        position = security('TRUR', lot_price=300.0)
        calculator.calculate_diff([position], [MarginTarget(ticker='TRUR', weight=100.0, desired_amount=1_000.0)])
        assert position.desired_lots == 3
        assert position.to_buy_lots == 3
        assert position.to_buy_amount == pytest.approx(900.0)

    def test_one_lot_minimum_for_positive_target(self, calculator):
        position = security('TGLD', lot_price=1_000.0)
        calculator.calculate_diff([position], [MarginTarget(ticker='TGLD', weight=1.0, desired_amount=400.0)])
        assert position.desired_lots == 0
        assert position.to_buy_lots == 1

    def test_held_ticker_without_target_is_sold(self, calculator):
        position = security('OLD', amount=7)
        calculator.calculate_diff([position], [])
        assert position.desired_percent == 0.0
        assert position.to_buy_lots == -7

    def test_lots_counted_from_shares(self, calculator):
        position = security('TMOS', lot_price=1_000.0, lot_size=10, amount=30)
        calculator.calculate_diff([position], [MarginTarget(ticker='TMOS', weight=100.0, desired_amount=5_000.0)])
        assert position.current_lots == 3
        assert position.to_buy_lots == 2

    def test_invalid_lot_price_leaves_position_unchanged(self, calculator):
        position = security('TRUR', lot_price=0.0)
        calculator.calculate_diff([position], [MarginTarget(ticker='TRUR', weight=100.0, desired_amount=1_000.0)])
        assert math.isnan(position.to_buy_lots)
        assert calculator.build_orders([position]) == []


class TestProfit:
    def test_fifo_price_preferred(self):
        position = security('TRUR', amount=10, average_position_price=50.0, average_position_price_fifo=80.0)
        profit = calculate_position_profit(position)
        assert profit.profit_amount == pytest.approx(200.0)
        assert profit.profit_percent == pytest.approx(25.0)

    def test_no_cost_data(self):
        assert calculate_position_profit(security('TRUR', amount=10)) is None

    def test_min_profit_filter_drops_losing_sells(self, calculator):
        losing = security('LOSS', amount=10, average_position_price=120.0)
        winning = security('WIN', amount=10, average_position_price=50.0)
        unknown = security('UNKNOWN', amount=10)
        intents = [
            OrderIntent(ticker=t, figi=f'F_{t}', direction=OrderDirection.SELL, lots=5, lot_price=100.0)
            for t in ('LOSS', 'WIN', 'UNKNOWN')
        ]
        intents.append(OrderIntent(ticker='BUY', figi='F_BUY', direction=OrderDirection.BUY, lots=1))

        kept, dropped = calculator.apply_min_profit_filter(intents, [losing, winning, unknown], 0.0)

        assert dropped == ['LOSS']
        assert [i.ticker for i in kept] == ['WIN', 'UNKNOWN', 'BUY']

    def test_filter_disabled_without_threshold(self, calculator):
        intents = [OrderIntent(ticker='LOSS', figi='F', direction=OrderDirection.SELL, lots=1)]
        assert calculator.apply_min_profit_filter(intents, [], None) == (intents, [])


def test_shares_before_and_after():
    positions = [cash(1_000.0), security('A', amount=30), security('B', amount=10)]
    before = RebalanceCalculator.portfolio_shares(positions)
    assert before == {'A': pytest.approx(75.0), 'B': pytest.approx(25.0)}

    intents = [
        OrderIntent(ticker='A', figi='F_A', direction=OrderDirection.SELL, lots=10, lot_price=100.0),
        OrderIntent(ticker='B', figi='F_B', direction=OrderDirection.BUY, lots=10, lot_price=100.0),
    ]
    after = RebalanceCalculator.simulate_after_shares(positions, intents)
    assert after == {'A': pytest.approx(50.0), 'B': pytest.approx(50.0)}
