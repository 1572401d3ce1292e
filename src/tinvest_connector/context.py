"""Per-iteration instrument listing"""

import logging
from typing import Dict, Iterable, List, Optional

from broker_connector_base import BrokerClient, Instrument, InstrumentType
from rebalance_calculator import normalize_ticker

INSTRUMENT_KINDS: List[InstrumentType] = ['share', 'etf', 'bond', 'currency', 'future']


class InstrumentContext:
    """
    Instruments listed once at iteration start and discarded with the iteration.

    Lookups are by canonical ticker or FIGI. When a ticker exists in several
    listings the preference order is ETF, share, bond, future, currency.
    """

    LOOKUP_ORDER: List[InstrumentType] = ['etf', 'share', 'bond', 'future', 'currency']

    def __init__(self, instruments: Optional[Dict[InstrumentType, List[Instrument]]] = None):
        self._by_kind: Dict[InstrumentType, List[Instrument]] = {kind: [] for kind in INSTRUMENT_KINDS}
        self._by_figi: Dict[str, Instrument] = {}
        self._by_ticker: Dict[str, Dict[InstrumentType, Instrument]] = {}
        for kind, items in (instruments or {}).items():
            self.add(kind, items)

    def add(self, kind: InstrumentType, instruments: Iterable[Instrument]):
        for instrument in instruments:
            self._by_kind.setdefault(kind, []).append(instrument)
            if instrument.figi:
                self._by_figi.setdefault(instrument.figi, instrument)
            key = normalize_ticker(instrument.ticker)
            if key:
                self._by_ticker.setdefault(key, {}).setdefault(kind, instrument)

    @classmethod
    async def load(cls, client: BrokerClient, kinds: Iterable[InstrumentType] = INSTRUMENT_KINDS,
                   logger: Optional[logging.Logger] = None) -> "InstrumentContext":
        logger = logger or logging.getLogger(__name__)
        context = cls()
        for kind in kinds:
            try:
                instruments = await client.list_instruments(kind)
            except Exception as e:
                logger.warning(f"Could not list {kind} instruments: {e}")
                continue
            context.add(kind, instruments)
            logger.debug(f"Loaded {len(instruments)} {kind} instruments")
        logger.info(f"Instrument context ready: {len(context)} instruments")
        return context

    def __len__(self) -> int:
        return sum(len(items) for items in self._by_kind.values())

    def instruments(self, kind: InstrumentType) -> List[Instrument]:
        return list(self._by_kind.get(kind, []))

    def find_by_figi(self, figi: Optional[str]) -> Optional[Instrument]:
        if not figi:
            return None
        return self._by_figi.get(figi)

    def find_by_ticker(self, ticker: Optional[str], kind: Optional[InstrumentType] = None) -> Optional[Instrument]:
        key = normalize_ticker(ticker)
        if not key:
            return None
        candidates = self._by_ticker.get(key)
        if not candidates:
            return None
        if kind is not None:
            return candidates.get(kind)
        for preferred in self.LOOKUP_ORDER:
            if preferred in candidates:
                return candidates[preferred]
        return None
