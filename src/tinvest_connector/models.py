"""T-Invest wire formats: fixed-point quotations, money values and timestamps"""

from datetime import datetime, timezone
from typing import Any, Optional

NANO = 1_000_000_000


def quotation_to_float(value: Any) -> Optional[float]:
    """
    Decode a Quotation / MoneyValue payload.

    Absent payload means unknown and returns None; an explicit zero stays 0.0.
    Plain numbers and numeric strings are accepted as already decoded.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    if isinstance(value, dict):
        if 'units' not in value and 'nano' not in value:
            return None
        try:
            units = int(value.get('units') or 0)
            nano = int(value.get('nano') or 0)
        except (TypeError, ValueError):
            return None
        return units + nano / NANO
    return None


def money_currency(value: Any, default: str = 'RUB') -> str:
    if isinstance(value, dict) and value.get('currency'):
        return str(value['currency']).upper()
    return default


def parse_timestamp(value: Any) -> Optional[datetime]:
    """RFC 3339 strings or {seconds, nanos} objects to aware datetimes"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, dict):
        seconds = value.get('seconds')
        if seconds is None:
            return None
        nanos = int(value.get('nanos') or 0)
        return datetime.fromtimestamp(int(seconds) + nanos / NANO, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        # Python accepts at most microseconds
        if '.' in text:
            head, _, tail = text.partition('.')
            digits = ''.join(ch for ch in tail if ch.isdigit())
            offset = tail[len(digits):]
            text = f"{head}.{digits[:6].ljust(6, '0')}{offset}"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')
