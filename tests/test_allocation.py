import pytest

from rebalance_calculator import (
    DesiredMode,
    InstrumentMetrics,
    compute_target_weights,
    normalize_ticker,
    normalize_wallet,
    tickers_equal,
)


class TestTickers:
    @pytest.mark.parametrize('raw,expected', [
        ('TGLD@', 'TGLD'),
        (' TMOS ', 'TMOS'),
        ('TRAY', 'TPAY'),
        ('TRUR', 'TRUR'),
    ])
    def test_normalize_ticker(self, raw, expected):
        assert normalize_ticker(raw) == expected

    def test_tickers_equal_through_alias(self):
        assert tickers_equal('TRAY', 'TPAY@')
        assert not tickers_equal('TRUR', None)

    def test_collapsing_wallet_keys_are_summed(self):
        assert normalize_wallet({'TPAY': 10, 'TRAY': 15, 'TGLD@': 75}) == {'TPAY': 25.0, 'TGLD': 75.0}


class TestManualMode:
    def test_returns_configured_weights(self):
        weights = compute_target_weights(DesiredMode.MANUAL, {'TRUR': 60, 'TGLD@': 40})
        assert weights == {'TRUR': 60.0, 'TGLD': 40.0}

    def test_default_mode_behaves_as_manual(self):
        assert compute_target_weights('default', {'TRUR': 100}) == {'TRUR': 100.0}

    def test_empty_wallet(self):
        assert compute_target_weights(DesiredMode.MARKETCAP, {}) == {}


class TestMarketCapMode:
    def test_proportional_to_market_cap(self):
        metrics = {
            'TMOS': InstrumentMetrics(market_cap=300.0),
            'TRUR': InstrumentMetrics(market_cap=100.0),
        }
        weights = compute_target_weights(DesiredMode.MARKETCAP, {'TMOS': 50, 'TRUR': 50}, metrics)
        assert weights['TMOS'] == pytest.approx(75.0)
        assert weights['TRUR'] == pytest.approx(25.0)

    def test_unresolved_instrument_excluded_and_rest_renormalized(self):
        metrics = {'TMOS': InstrumentMetrics(market_cap=300.0)}
        weights = compute_target_weights(DesiredMode.MARKETCAP, {'TMOS': 50, 'TRUR': 50}, metrics)
        assert weights == {'TMOS': pytest.approx(100.0)}

    def test_zero_market_cap_is_kept_with_zero_weight(self):
        metrics = {
            'TMOS': InstrumentMetrics(market_cap=300.0),
            'TRUR': InstrumentMetrics(market_cap=0.0),
        }
        weights = compute_target_weights(DesiredMode.MARKETCAP, {'TMOS': 50, 'TRUR': 50}, metrics)
        assert weights['TRUR'] == 0.0
        assert weights['TMOS'] == pytest.approx(100.0)

    def test_no_data_falls_back_to_configured_weights(self):
        weights = compute_target_weights(DesiredMode.MARKETCAP, {'TMOS': 70, 'TRUR': 30}, {})
        assert weights == {'TMOS': 70.0, 'TRUR': 30.0}


def test_aum_mode_proportional_to_aum():
    metrics = {
        'TGLD': InstrumentMetrics(aum=1_000.0),
        'TRUR': InstrumentMetrics(aum=3_000.0),
    }
    weights = compute_target_weights(DesiredMode.AUM, {'TGLD': 50, 'TRUR': 50}, metrics)
    assert weights['TGLD'] == pytest.approx(25.0)
    assert weights['TRUR'] == pytest.approx(75.0)


def test_marketcap_aum_mode_averages_both_shares():
    metrics = {
        'A': InstrumentMetrics(market_cap=100.0, aum=300.0),
        'B': InstrumentMetrics(market_cap=100.0, aum=100.0),
        'C': InstrumentMetrics(market_cap=500.0),
    }
    weights = compute_target_weights(DesiredMode.MARKETCAP_AUM, {'A': 1, 'B': 1, 'C': 1}, metrics)
    # A: (0.5 + 0.75) / 2, B: (0.5 + 0.25) / 2; C lacks AUM
    assert weights['A'] == pytest.approx(62.5)
    assert weights['B'] == pytest.approx(37.5)
    assert 'C' not in weights
    assert sum(weights.values()) == pytest.approx(100.0)


class TestDecorrelation:
    def test_premium_reduces_weight(self):
        metrics = {
            'A': InstrumentMetrics(market_cap=110.0, aum=100.0),
            'B': InstrumentMetrics(market_cap=100.0, aum=100.0),
        }
        weights = compute_target_weights(DesiredMode.DECORRELATION, {'A': 50, 'B': 50}, metrics)
        assert weights['A'] == pytest.approx(45 / 95 * 100)
        assert weights['B'] == pytest.approx(50 / 95 * 100)

    def test_weights_never_negative(self):
        metrics = {
            'A': InstrumentMetrics(market_cap=1_000.0, aum=100.0),
            'B': InstrumentMetrics(market_cap=100.0, aum=100.0),
        }
        weights = compute_target_weights(DesiredMode.DECORRELATION, {'A': 50, 'B': 50}, metrics)
        assert weights['A'] == 0.0
        assert weights['B'] == pytest.approx(100.0)

    def test_strength_zero_keeps_baseline(self):
        metrics = {
            'A': InstrumentMetrics(market_cap=150.0, aum=100.0),
            'B': InstrumentMetrics(market_cap=100.0, aum=100.0),
        }
        weights = compute_target_weights(DesiredMode.DECORRELATION, {'A': 40, 'B': 60}, metrics, 0.0)
        assert weights['A'] == pytest.approx(40.0)
        assert weights['B'] == pytest.approx(60.0)

    def test_missing_metrics(self):
        metrics = {
            'A': InstrumentMetrics(market_cap=100.0),
            'B': InstrumentMetrics(market_cap=100.0, aum=100.0),
        }
        weights = compute_target_weights(DesiredMode.DECORRELATION, {'A': 30, 'B': 30, 'C': 40}, metrics)
        # A keeps its baseline, C has nothing and is dropped
        assert 'C' not in weights
        assert weights['A'] == pytest.approx(50.0)
        assert weights['B'] == pytest.approx(50.0)
