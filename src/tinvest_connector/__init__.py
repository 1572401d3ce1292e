from .client import TInvestClient
from .rebalancer import TInvestRebalancer
from .context import InstrumentContext
from .market_data import MarketDataResolver
from .aum import AumScraper, build_aum_map, parse_money
from .exchange import is_exchange_open_now
from .sequencer import OrderSequencer, SequencerResult
from .accounts import resolve_account_id
from .models import quotation_to_float

__version__ = "1.0.0"

__all__ = [
    "TInvestClient",
    "TInvestRebalancer",
    "InstrumentContext",
    "MarketDataResolver",
    "AumScraper",
    "build_aum_map",
    "parse_money",
    "is_exchange_open_now",
    "OrderSequencer",
    "SequencerResult",
    "resolve_account_id",
    "quotation_to_float",
    "__version__",
]
