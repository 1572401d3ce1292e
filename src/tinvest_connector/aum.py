"""Fund AUM lookup from the T-Capital statistics page"""

import logging
import math
import re
from typing import Dict, Iterable, List, Optional, Pattern, Set

import aiohttp

from app_config import AumConfig, get_config
from rebalance_calculator import AumInfo, normalize_ticker

_TABLE_RE = re.compile(r'<table[\s\S]*?</table>', re.IGNORECASE)
_ROW_RE = re.compile(r'<tr[\s\S]*?</tr>', re.IGNORECASE)
_CELL_RE = re.compile(r'<t[hd][\s\S]*?</t[hd]>', re.IGNORECASE)
_NUMBER_RE = re.compile(r'[0-9][0-9\s.,]*[0-9]')
_TICKER_TOKEN_RE = re.compile(r'^[A-Z]{3,6}$')

LAST_DAY_HEADER = 'сча за последний день'
TABLE_HEADER_MARKERS = (LAST_DAY_HEADER, 'стоимость чистых активов', 'сча')

# Fund names on the statistics page for funds whose ticker is not printed in the table
FUND_NAME_PATTERNS: Dict[str, List[Pattern]] = {
    'TRUR': [re.compile(r'вечного\s+портфеля\s+в\s+рублях', re.IGNORECASE)],
    'TPAY': [re.compile(r'пассивный\s+доход', re.IGNORECASE)],
    'TGLD': [re.compile(r'золото', re.IGNORECASE)],
    'TRND': [re.compile(r'трендов.*акци', re.IGNORECASE)],
    'TLCB': [re.compile(r'валютные\s+облигации', re.IGNORECASE)],
    'TOFZ': [re.compile(r'офз', re.IGNORECASE)],
    'TBRU': [re.compile(r'т-капитал\s+облигации', re.IGNORECASE)],
    'TMON': [re.compile(r'денежный\s+рынок', re.IGNORECASE)],
    'TMOS': [re.compile(r'индекс\s+мосбиржи', re.IGNORECASE)],
    'TITR': [re.compile(r'российские\s+технологии', re.IGNORECASE)],
    'TDIV': [re.compile(r'дивидендные\s+акции', re.IGNORECASE)],
}


def html_to_text(html: str) -> str:
    text = re.sub(r'<script[\s\S]*?</script>', ' ', html, flags=re.IGNORECASE)
    text = re.sub(r'<style[\s\S]*?</style>', ' ', text, flags=re.IGNORECASE)
    text = re.sub(r'<[^>]+>', ' ', text)
    text = text.replace('&nbsp;', ' ').replace('&amp;', '&')
    return re.sub(r'\s+', ' ', text).strip()


def parse_money(value: str) -> Optional[float]:
    """Parse an amount like '12 345 678,90' or '1,234.56'; non-positive or unparsable -> None"""
    cleaned = re.sub(r'[^0-9,.\-\s]', ' ', value)
    cleaned = re.sub(r'\s+', '', cleaned)
    cleaned = re.sub(r'(\d+),(\d{3}\.\d{2})', r'\1\2', cleaned, count=1)
    cleaned = re.sub(r',(\d{2})$', r'.\1', cleaned)
    try:
        number = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def detect_currency(text: str) -> str:
    if '$' in text:
        return 'USD'
    if '€' in text:
        return 'EUR'
    return 'RUB'


def extract_statistics_table(html: str) -> Optional[str]:
    """The table whose header mentions net asset value, else the first table"""
    tables = _TABLE_RE.findall(html)
    if not tables:
        return None
    for table in tables:
        header_row = _ROW_RE.search(table)
        header_text = html_to_text(header_row.group(0)).lower() if header_row else ''
        if any(marker in header_text for marker in TABLE_HEADER_MARKERS):
            return table
    return tables[0]


def _amount_from_cell(cell_html: str) -> Optional[AumInfo]:
    text = html_to_text(cell_html)
    amounts = [n for n in (parse_money(m) for m in _NUMBER_RE.findall(text)) if n is not None]
    if not amounts:
        return None
    return AumInfo(amount=max(amounts), currency=detect_currency(text))


def parse_aum_table(table_html: str, tickers: Set[str]) -> Dict[str, AumInfo]:
    """
    Map canonical ticker -> AUM for rows that print one of the requested tickers.

    The amount comes from the 'last day' column when the header has one,
    otherwise from the largest number in the row.
    """
    result: Dict[str, AumInfo] = {}
    rows = _ROW_RE.findall(table_html)
    if not rows:
        return result

    headers = [html_to_text(cell).lower() for cell in _CELL_RE.findall(rows[0])]
    last_day_index = next((i for i, h in enumerate(headers) if LAST_DAY_HEADER in h), -1)

    for row in rows:
        text = html_to_text(row)
        if not text:
            continue
        ticker = None
        for token in text.split():
            token = token.rstrip('@')
            if _TICKER_TOKEN_RE.match(token):
                candidate = normalize_ticker(token)
                if candidate in tickers:
                    ticker = candidate
                    break
        if ticker is None:
            continue

        cells = _CELL_RE.findall(row)
        cell = cells[last_day_index] if 0 <= last_day_index < len(cells) else row
        info = _amount_from_cell(cell)
        if info is not None:
            result[ticker] = info
    return result


def find_aum_by_name(table_html: str, ticker: str) -> Optional[AumInfo]:
    patterns = FUND_NAME_PATTERNS.get(ticker)
    if not patterns:
        return None
    for row in _ROW_RE.findall(table_html):
        text = html_to_text(row)
        if text and all(p.search(text) for p in patterns):
            # Reuse the header-aware parser by pretending the row prints the ticker
            parsed = parse_aum_table(f"<table>{row}</table>", {ticker})
            if ticker in parsed:
                return parsed[ticker]
            return _amount_from_cell(row)
    return None


def build_aum_map(html: str, tickers: Iterable[str]) -> Dict[str, AumInfo]:
    wanted = {normalize_ticker(t) for t in tickers if t}
    table = extract_statistics_table(html)
    if not table:
        return {}
    result = parse_aum_table(table, wanted)
    for ticker in wanted - result.keys():
        by_name = find_aum_by_name(table, ticker)
        if by_name is not None:
            result[ticker] = by_name
    return {ticker: info for ticker, info in result.items() if info.amount > 0}


class AumScraper:
    """Best-effort AUM source; any network or parse failure yields an empty map"""

    def __init__(self, config: Optional[AumConfig] = None, logger: Optional[logging.Logger] = None):
        self.config = config or get_config().aum
        self.logger = logger or logging.getLogger(__name__)

    async def fetch_html(self) -> str:
        headers = {
            'User-Agent': self.config.user_agent,
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
            'Accept-Language': 'ru,en;q=0.9',
        }
        async with aiohttp.ClientSession() as session:
            async with session.get(
                self.config.statistics_url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
            ) as response:
                if response.status != 200:
                    raise aiohttp.ClientResponseError(
                        response.request_info, response.history,
                        status=response.status, message=f"statistics page returned {response.status}"
                    )
                return await response.text()

    async def fetch_aum_map(self, tickers: Iterable[str]) -> Dict[str, AumInfo]:
        tickers = list(tickers)
        try:
            html = await self.fetch_html()
        except (aiohttp.ClientError, TimeoutError) as e:
            self.logger.warning(f"Could not fetch AUM statistics: {e}")
            return {}

        try:
            result = build_aum_map(html, tickers)
        except Exception as e:
            self.logger.warning(f"Could not parse AUM statistics: {e}")
            return {}

        missing = sorted({normalize_ticker(t) for t in tickers} - result.keys())
        self.logger.info(f"AUM resolved for {len(result)} of {len(tickers)} tickers")
        if missing:
            self.logger.info(f"AUM not found for: {', '.join(missing)}")
        return result
