"""Target weight computation for every desired_mode"""

import logging
from enum import Enum
from typing import Dict, Optional

from .models import InstrumentMetrics, is_finite_number
from .tickers import normalize_wallet

logger = logging.getLogger(__name__)


class DesiredMode(str, Enum):
    MANUAL = 'manual'
    DEFAULT = 'default'
    MARKETCAP = 'marketcap'
    AUM = 'aum'
    MARKETCAP_AUM = 'marketcap_aum'
    DECORRELATION = 'decorrelation'

    @property
    def requires_market_cap(self) -> bool:
        return self in (DesiredMode.MARKETCAP, DesiredMode.MARKETCAP_AUM, DesiredMode.DECORRELATION)

    @property
    def requires_aum(self) -> bool:
        return self in (DesiredMode.AUM, DesiredMode.MARKETCAP_AUM, DesiredMode.DECORRELATION)


def compute_target_weights(mode: DesiredMode, desired_wallet: Dict[str, float],
                           metrics: Optional[Dict[str, InstrumentMetrics]] = None,
                           decorrelation_strength: float = 1.0,
                           log: Optional[logging.Logger] = None) -> Dict[str, float]:
    """
    Produce target weights in percent keyed by canonical ticker.

    Args:
        mode: allocation strategy
        desired_wallet: configured weights, the baseline and the universe
        metrics: resolved market cap / AUM per canonical ticker, in home currency
        decorrelation_strength: 0..1, scales the decorrelation adjustment

    Returns:
        ticker -> weight. Empty when the wallet is empty.
    """
    log = log or logger
    mode = DesiredMode(mode)
    baseline = normalize_wallet(desired_wallet)
    metrics = metrics or {}

    if not baseline:
        return {}

    if mode in (DesiredMode.MANUAL, DesiredMode.DEFAULT):
        total = sum(baseline.values())
        if abs(total - 100) > 1:
            log.warning(f"Desired wallet sums to {total:.2f}%, weights are used as configured")
        return baseline

    if mode == DesiredMode.MARKETCAP:
        values = _resolved_values(baseline, metrics, 'market_cap', log)
        return _proportional(values, baseline, 'market cap', log)

    if mode == DesiredMode.AUM:
        values = _resolved_values(baseline, metrics, 'aum', log)
        return _proportional(values, baseline, 'AUM', log)

    if mode == DesiredMode.MARKETCAP_AUM:
        return _marketcap_aum_weights(baseline, metrics, log)

    return _decorrelation_weights(baseline, metrics, decorrelation_strength, log)


def _metric(metrics: Dict[str, InstrumentMetrics], ticker: str, field: str) -> Optional[float]:
    entry = metrics.get(ticker)
    if entry is None:
        return None
    value = getattr(entry, field)
    if value is None or not is_finite_number(value) or value < 0:
        return None
    return float(value)


def _resolved_values(baseline: Dict[str, float], metrics: Dict[str, InstrumentMetrics],
                     field: str, log: logging.Logger) -> Dict[str, float]:
    values = {}
    for ticker in baseline:
        value = _metric(metrics, ticker, field)
        if value is None:
            log.info(f"{ticker}: {field} unresolved, excluded from target weights")
            continue
        values[ticker] = value
    return values


def _proportional(values: Dict[str, float], baseline: Dict[str, float], label: str,
                  log: logging.Logger) -> Dict[str, float]:
    total = sum(values.values())
    if not values or total <= 0:
        log.warning(f"No usable {label} data, falling back to configured weights")
        return baseline
    return {ticker: value / total * 100 for ticker, value in values.items()}


def _marketcap_aum_weights(baseline: Dict[str, float], metrics: Dict[str, InstrumentMetrics],
                           log: logging.Logger) -> Dict[str, float]:
    both = {}
    for ticker in baseline:
        mcap = _metric(metrics, ticker, 'market_cap')
        aum = _metric(metrics, ticker, 'aum')
        if mcap is None or aum is None:
            log.info(f"{ticker}: market cap or AUM unresolved, excluded from target weights")
            continue
        both[ticker] = (mcap, aum)

    total_mcap = sum(m for m, _ in both.values())
    total_aum = sum(a for _, a in both.values())
    if not both or total_mcap <= 0 or total_aum <= 0:
        log.warning("No usable market cap / AUM data, falling back to configured weights")
        return baseline

    return {
        ticker: (mcap / total_mcap + aum / total_aum) / 2 * 100
        for ticker, (mcap, aum) in both.items()
    }


def _decorrelation_weights(baseline: Dict[str, float], metrics: Dict[str, InstrumentMetrics],
                           strength: float, log: logging.Logger) -> Dict[str, float]:
    strength = min(max(strength, 0.0), 1.0)
    adjusted = {}
    for ticker, weight in baseline.items():
        mcap = _metric(metrics, ticker, 'market_cap')
        aum = _metric(metrics, ticker, 'aum')
        if mcap is None and aum is None:
            log.info(f"{ticker}: neither market cap nor AUM resolved, excluded from target weights")
            continue
        if mcap is None or aum is None or aum <= 0:
            log.info(f"{ticker}: incomplete market cap / AUM data, keeping configured weight {weight:.2f}%")
            adjusted[ticker] = weight
            continue
        deviation = (mcap - aum) / aum
        clamped = min(max(deviation, -1.0), 1.0)
        adjusted[ticker] = weight * (1 - strength * clamped)
        log.debug(f"{ticker}: decorrelation {deviation * 100:.2f}%, weight {weight:.2f}% -> {adjusted[ticker]:.2f}%")

    total = sum(adjusted.values())
    if total <= 0:
        log.warning("Decorrelation produced no positive weights, falling back to configured weights")
        return baseline
    return {ticker: value / total * 100 for ticker, value in adjusted.items()}
