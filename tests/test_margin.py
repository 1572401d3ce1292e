from datetime import datetime

import pytest

from app_config import MarginTradingConfig
from rebalance_calculator import MarginCalculator


def margin(**overrides) -> MarginCalculator:
    values = {'enabled': True, 'multiplier': 2.0, 'free_threshold': 0.0, 'max_margin_size': 100_000.0}
    values.update(overrides)
    return MarginCalculator(MarginTradingConfig(**values))


@pytest.mark.parametrize('weights', [
    {'TRUR': 50.0, 'TMOS': 50.0},
    {'TRUR': 33.3, 'TMOS': 33.3, 'TGLD': 33.4},
    {'TRUR': 100.0},
])
def test_disabled_margin_uses_capital_exactly(weights):
    calculator = MarginCalculator(MarginTradingConfig(enabled=False, multiplier=3.0))
    targets = calculator.apply_margin(weights, 12_345.0)
    for target in targets:
        assert target.desired_amount == 12_345.0 * weights[target.ticker] / 100
        assert target.is_margin is False


def test_exposure_caps_headroom():
    calculator = margin(free_threshold=2_000.0, max_margin_size=5_000.0)
    # leverable 8,000 -> headroom 8,000 capped at 5,000
    assert calculator.exposure(10_000.0) == 15_000.0
    assert calculator.exposure(10_000.0, multiplier=1.0) == 10_000.0
    assert calculator.exposure(1_000.0) == 1_000.0


def test_positions_beyond_capital_are_margin():
    targets = {t.ticker: t for t in margin().apply_margin({'A': 60.0, 'B': 40.0}, 10_000.0)}
    assert targets['A'].desired_amount == pytest.approx(12_000.0)
    assert targets['A'].is_margin
    assert targets['B'].desired_amount == pytest.approx(8_000.0)
    assert targets['B'].is_margin


def test_non_margin_instruments_are_funded_first():
    targets = {
        t.ticker: t
        for t in margin().apply_margin({'A': 60.0, 'TGLD': 40.0}, 10_000.0, non_margin_instruments=['TGLD@'])
    }
    assert not targets['TGLD'].is_margin
    assert targets['A'].is_margin


def test_greedy_allocation_by_weight():
    targets = {t.ticker: t for t in margin().apply_margin({'A': 25.0, 'B': 50.0, 'C': 25.0}, 10_000.0)}
    # B (10,000) fits in capital, A and C do not
    assert not targets['B'].is_margin
    assert targets['A'].is_margin
    assert targets['C'].is_margin


class TestLastBalance:
    def test_market_already_closed(self):
        assert MarginCalculator.is_last_balance(datetime(2026, 3, 10, 19, 0), '18:45', 3600)

    def test_next_iteration_after_close(self):
        assert MarginCalculator.is_last_balance(datetime(2026, 3, 10, 18, 0), '18:45', 3600)

    def test_within_window(self):
        assert MarginCalculator.is_last_balance(datetime(2026, 3, 10, 18, 35), '18:45', 300, 15)

    def test_midday(self):
        assert not MarginCalculator.is_last_balance(datetime(2026, 3, 10, 12, 0), '18:45', 3600)


class TestBalancingStrategy:
    def test_not_applied_before_last_balance(self):
        decision = margin(balancing_strategy='remove').decide_balancing(-5_000.0, is_last_balance=False)
        assert not decision.should_unwind
        assert decision.margin_in_use == 5_000.0

    def test_remove_unwinds_any_margin(self):
        calculator = margin(balancing_strategy='remove')
        assert calculator.decide_balancing(-1.0, is_last_balance=True).should_unwind
        assert not calculator.decide_balancing(500.0, is_last_balance=True).should_unwind

    def test_keep_never_unwinds(self):
        assert not margin(balancing_strategy='keep').decide_balancing(-50_000.0, True).should_unwind

    def test_keep_if_small_uses_threshold(self):
        calculator = margin(balancing_strategy='keep_if_small', max_margin_size=1_000.0)
        assert not calculator.decide_balancing(-800.0, True).should_unwind
        assert calculator.decide_balancing(-1_500.0, True).should_unwind
        assert not calculator.decide_balancing(-1_500.0, True, keep_if_small_threshold=2_000.0).should_unwind
