"""
Bond Quote Engine

Indicative bond quotes from third-party yield/price feeds:
- bond_math: price from yield, approximate and Newton-Raphson yield from price
- instruments: instrument catalog model + JSON loading
- quotes: quote record, quote tables and placeholder diagnostics
- adapters: Yahoo yield / FRED TIPS / ETF proxy / mock sources with TTL caches
- engine: priority fallback chain, quote cache, subscribers
- scheduler: periodic non-overlapping refresh
- config: environment settings + logging
"""
from .engine import QuoteEngine
from .instruments import Instrument, load_catalog
from .quotes import QuoteData

__all__ = ["QuoteEngine", "Instrument", "QuoteData", "load_catalog"]
