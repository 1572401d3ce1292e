"""Ticker normalization shared by the calculator and the connector"""

from typing import Dict, Optional

# Exchange ticker renames: old -> current
TICKER_ALIASES: Dict[str, str] = {
    'TRAY': 'TPAY',
}


def normalize_ticker(ticker: Optional[str]) -> Optional[str]:
    """Canonical form: trimmed, without the '@' suffix, aliases applied"""
    if not ticker:
        return ticker
    normalized = ticker.strip()
    if normalized.endswith('@'):
        normalized = normalized[:-1]
    return TICKER_ALIASES.get(normalized, normalized)


def tickers_equal(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return normalize_ticker(a) == normalize_ticker(b)


def normalize_wallet(wallet: Dict[str, float]) -> Dict[str, float]:
    """Re-key a desired wallet by canonical ticker, summing keys that collapse together"""
    result: Dict[str, float] = {}
    for ticker, weight in wallet.items():
        key = normalize_ticker(ticker) or ticker
        result[key] = result.get(key, 0.0) + float(weight)
    return result
