from __future__ import annotations

import asyncio
import logging
import httpx
import pandas as pd
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .adapters import EtfProxyAdapter, FredTipsAdapter, MockAdapter, QuoteAdapter, YahooYieldAdapter
from .config import USER_AGENT, EngineSettings, validate_price_mode
from .instruments import Instrument, index_instruments
from .quotes import DiversityReport, QuoteData, check_quote_diversity, quotes_frame, source_stats

logger = logging.getLogger(__name__)

Subscriber = Callable[[QuoteData], None]


def default_adapters(settings: EngineSettings, client: httpx.AsyncClient) -> List[QuoteAdapter]:
    """Priority order: Yahoo yield, FRED, ETF proxy, Mock."""
    return [
        YahooYieldAdapter(client=client, base_url=settings.yahoo_quote_url),
        FredTipsAdapter(api_key=settings.fred_api_key, client=client, base_url=settings.fred_observations_url),
        EtfProxyAdapter(client=client, base_url=settings.yahoo_quote_url),
        MockAdapter(),
    ]


class QuoteEngine:
    """
    Owns the instrument map, runs the adapter chain per instrument and keeps
    the latest accepted quote per instrument key.

    The cache is only overwritten on success: an instrument whose chain is
    exhausted keeps showing its previous quote.
    """

    def __init__(
        self,
        price_mode: Optional[str] = None,
        adapters: Optional[Sequence[QuoteAdapter]] = None,
        settings: Optional[EngineSettings] = None,
        inter_instrument_delay: Optional[float] = None,
    ):
        self.settings = settings or EngineSettings()
        self._price_mode = validate_price_mode(price_mode or self.settings.price_mode)

        self._client: Optional[httpx.AsyncClient] = None
        if adapters is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.request_timeout,
                headers={"User-Agent": USER_AGENT},
            )
            adapters = default_adapters(self.settings, self._client)
        self.adapters: List[QuoteAdapter] = list(adapters)

        if inter_instrument_delay is None:
            inter_instrument_delay = self.settings.inter_instrument_delay
        self.inter_instrument_delay = float(inter_instrument_delay)

        self._instruments: Dict[str, Instrument] = {}
        self._quote_cache: Dict[str, QuoteData] = {}
        self._subscribers: List[Subscriber] = []
        self._refresh_lock = asyncio.Lock()

        logger.info("Quote engine initialized in %s mode with adapters %s",
                    self._price_mode, [a.adapter_name() for a in self.adapters])

    # ---- catalog ----

    def load_instruments(self, instruments: Iterable[Instrument]) -> None:
        self._instruments = index_instruments(instruments)
        logger.info("Loaded %d instruments", len(self._instruments))

    @property
    def instruments(self) -> Dict[str, Instrument]:
        return dict(self._instruments)

    def get_instrument(self, instrument_key: str) -> Optional[Instrument]:
        return self._instruments.get(instrument_key)

    # ---- mode ----

    @property
    def price_mode(self) -> str:
        return self._price_mode

    def set_price_mode(self, mode: str) -> None:
        self._price_mode = validate_price_mode(mode)
        logger.info("Price mode set to: %s", self._price_mode)

    # ---- subscribers ----

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register callback for every accepted quote; returns the unsubscribe handle."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _emit_quote(self, quote: QuoteData) -> None:
        self._quote_cache[quote.instrument_key] = quote
        for callback in list(self._subscribers):
            try:
                callback(quote)
            except Exception:
                logger.exception("Quote subscriber failed for %s", quote.instrument_key)

    # ---- pricing ----

    def _mock_adapter(self) -> Optional[QuoteAdapter]:
        for adapter in self.adapters:
            if adapter.adapter_name() == MockAdapter.name:
                return adapter
        return None

    async def get_quote(self, instrument_key: str) -> Optional[QuoteData]:
        instrument = self._instruments.get(instrument_key)
        if instrument is None:
            logger.error("Instrument not found: %s", instrument_key)
            return None

        if self._price_mode == "mock":
            chain = [a for a in [self._mock_adapter()] if a is not None]
        else:
            chain = self.adapters

        for adapter in chain:
            try:
                quote = await adapter.get_quote(instrument)
            except Exception:
                logger.exception("Adapter %s failed for %s", adapter.adapter_name(), instrument_key)
                continue

            if quote is not None:
                self._emit_quote(quote)
                return quote

        logger.error("All adapters failed for %s", instrument_key)
        return None

    async def process_all_instruments(self) -> List[QuoteData]:
        """One sequential pass over the catalog, pausing between instruments."""
        results: List[QuoteData] = []

        keys = list(self._instruments)
        for i, key in enumerate(keys):
            quote = await self.get_quote(key)
            if quote is not None:
                results.append(quote)

            if self.inter_instrument_delay > 0 and i < len(keys) - 1:
                await asyncio.sleep(self.inter_instrument_delay)

        logger.info("Refresh pass done: %d/%d instruments quoted", len(results), len(keys))
        return results

    @property
    def refresh_running(self) -> bool:
        return self._refresh_lock.locked()

    async def refresh_if_idle(self) -> Optional[List[QuoteData]]:
        """Run a pass unless one is already in flight (then return None)."""
        if self._refresh_lock.locked():
            logger.warning("Refresh pass still running, skipping this tick")
            return None

        async with self._refresh_lock:
            return await self.process_all_instruments()

    # ---- read side ----

    def get_cached_quote(self, instrument_key: str) -> Optional[QuoteData]:
        return self._quote_cache.get(instrument_key)

    def get_all_cached_quotes(self) -> Dict[str, QuoteData]:
        return dict(self._quote_cache)

    def get_all_cached_prices(self) -> List[QuoteData]:
        return list(self._quote_cache.values())

    def validate_quote_diversity(self) -> DiversityReport:
        return check_quote_diversity(self.get_all_cached_prices())

    def adapter_stats(self) -> pd.DataFrame:
        return source_stats(self.get_all_cached_prices())

    def quotes_frame(self) -> pd.DataFrame:
        return quotes_frame(self.get_all_cached_prices())

    async def aclose(self) -> None:
        for adapter in self.adapters:
            await adapter.aclose()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
