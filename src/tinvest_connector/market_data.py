"""Prices, FX conversion, market cap and AUM resolution"""

import logging
import math
import re
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from broker_connector_base import BrokerClient, Instrument
from rebalance_calculator import (
    AumInfo,
    DesiredMode,
    InstrumentMetrics,
    MarketCapInfo,
    NumSharesSource,
    normalize_ticker,
)
from .aum import AumScraper
from .context import InstrumentContext

NumSharesTier = Callable[[Instrument], Awaitable[Optional[float]]]


class MarketDataResolver:
    """
    Resolve market data for one iteration.

    Every lookup fails closed per instrument: an unresolved instrument is
    absent from results, never reported as zero.
    """

    def __init__(self, client: BrokerClient, context: InstrumentContext, home_currency: str = 'RUB',
                 aum_scraper: Optional[AumScraper] = None, logger: Optional[logging.Logger] = None):
        self.client = client
        self.context = context
        self.home_currency = home_currency.upper()
        self.aum_scraper = aum_scraper
        self.logger = logger or logging.getLogger(__name__)
        self._fx_rates: Dict[str, float] = {self.home_currency: 1.0}

    async def get_last_price(self, figi: str) -> Optional[float]:
        try:
            price = await self.client.get_last_price(figi)
        except Exception as e:
            self.logger.warning(f"Could not get last price for {figi}: {e}")
            return None
        if price is None or not math.isfinite(price) or price <= 0:
            return None
        return price

    def _find_currency_instrument(self, currency: str) -> Optional[Instrument]:
        patterns = [
            re.compile(rf'{currency}{self.home_currency}', re.IGNORECASE),
            re.compile(rf'{currency}.*{self.home_currency}', re.IGNORECASE),
            re.compile(rf'{currency}000UTS', re.IGNORECASE),
        ]
        candidates = self.context.instruments('currency')
        for pattern in patterns:
            for instrument in candidates:
                text = f"{instrument.ticker} {instrument.name} {instrument.class_code} {instrument.currency}"
                if pattern.search(text):
                    return instrument
        return None

    async def get_fx_rate(self, currency: str) -> float:
        """Home currency units per one unit of currency; 0 when unavailable"""
        currency = (currency or self.home_currency).upper()
        if currency in self._fx_rates:
            return self._fx_rates[currency]

        rate = 0.0
        instrument = self._find_currency_instrument(currency)
        if instrument is None:
            self.logger.warning(f"No currency instrument found for {currency}/{self.home_currency}")
        else:
            price = await self.get_last_price(instrument.figi)
            if price is not None:
                rate = price
        self._fx_rates[currency] = rate
        return rate

    async def to_home_currency(self, amount: float, currency: str) -> Optional[float]:
        rate = await self.get_fx_rate(currency)
        if rate <= 0:
            return None
        return amount * rate

    async def get_price_in_home_currency(self, instrument: Instrument) -> Optional[float]:
        price = await self.get_last_price(instrument.figi)
        if price is None:
            return None
        return await self.to_home_currency(price, instrument.currency)

    # Share count fallback tiers, tried in order

    async def _num_shares_from_listing(self, instrument: Instrument) -> Optional[float]:
        if instrument.instrument_type == 'etf':
            return instrument.num_shares
        return instrument.issue_size

    async def _num_shares_from_etf_by(self, instrument: Instrument) -> Optional[float]:
        if instrument.instrument_type != 'etf':
            return None
        detailed = await self.client.get_etf_by_figi(instrument.figi)
        return detailed.num_shares if detailed else None

    async def _num_shares_from_asset(self, instrument: Instrument) -> Optional[float]:
        if not instrument.asset_uid:
            return None
        asset = await self.client.get_asset_by(instrument.asset_uid)
        if asset is None:
            return None
        if instrument.instrument_type == 'etf':
            return asset.etf_num_shares
        return asset.share_issue_size

    def _num_shares_tiers(self) -> List[Tuple[NumSharesSource, NumSharesTier]]:
        return [
            (NumSharesSource.LIST, self._num_shares_from_listing),
            (NumSharesSource.ETF_BY, self._num_shares_from_etf_by),
            (NumSharesSource.ASSET, self._num_shares_from_asset),
        ]

    async def resolve_num_shares(self, instrument: Instrument) -> Optional[Tuple[float, NumSharesSource]]:
        for source, tier in self._num_shares_tiers():
            try:
                value = await tier(instrument)
            except Exception as e:
                self.logger.debug(f"{instrument.ticker}: share count tier {source.value} failed: {e}")
                continue
            if value is not None and math.isfinite(value) and value >= 0:
                return float(value), source
        return None

    async def resolve_market_cap(self, ticker: str) -> Optional[MarketCapInfo]:
        normalized = normalize_ticker(ticker)
        instrument = self.context.find_by_ticker(normalized, 'etf') or self.context.find_by_ticker(normalized, 'share')
        if instrument is None:
            self.logger.info(f"{normalized}: no ETF or share listing, market cap unresolved")
            return None

        try:
            price = await self.get_price_in_home_currency(instrument)
            if price is None:
                self.logger.info(f"{normalized}: no price in {self.home_currency}, market cap unresolved")
                return None
            shares = await self.resolve_num_shares(instrument)
        except Exception as e:
            self.logger.warning(f"{normalized}: market cap resolution failed: {e}")
            return None

        if shares is None:
            self.logger.info(f"{normalized}: share count unavailable from every source, market cap unresolved")
            return None

        num_shares, source = shares
        return MarketCapInfo(
            ticker=normalized,
            figi=instrument.figi,
            num_shares=num_shares,
            num_shares_source=source,
            last_price_in_home_currency=price
        )

    async def resolve_market_caps(self, tickers: Iterable[str]) -> Dict[str, MarketCapInfo]:
        result = {}
        for ticker in tickers:
            info = await self.resolve_market_cap(ticker)
            if info is not None:
                result[info.ticker] = info
        return result

    async def resolve_aum(self, tickers: Iterable[str]) -> Dict[str, float]:
        """AUM in home currency; entries that cannot be converted are dropped"""
        if self.aum_scraper is None:
            return {}
        raw: Dict[str, AumInfo] = await self.aum_scraper.fetch_aum_map(tickers)
        result = {}
        for ticker, info in raw.items():
            if info.amount <= 0:
                continue
            amount = await self.to_home_currency(info.amount, info.currency)
            if amount is None:
                self.logger.warning(f"{ticker}: AUM in {info.currency} cannot be converted, excluded")
                continue
            result[ticker] = amount
        return result

    async def collect_metrics(self, mode: DesiredMode, tickers: Iterable[str]) -> Dict[str, InstrumentMetrics]:
        mode = DesiredMode(mode)
        tickers = [normalize_ticker(t) for t in tickers]
        market_caps = await self.resolve_market_caps(tickers) if mode.requires_market_cap else {}
        aums = await self.resolve_aum(tickers) if mode.requires_aum else {}

        metrics = {}
        for ticker in tickers:
            cap = market_caps.get(ticker)
            aum = aums.get(ticker)
            if cap is None and aum is None:
                continue
            metrics[ticker] = InstrumentMetrics(
                market_cap=cap.market_cap_in_home_currency if cap else None,
                aum=aum
            )
            cap_text = f"{cap.market_cap_in_home_currency:,.0f} ({cap.num_shares_source.value})" if cap else "n/a"
            aum_text = f"{aum:,.0f}" if aum is not None else "n/a"
            self.logger.info(f"{ticker}: market cap {cap_text}, AUM {aum_text}")
        return metrics
