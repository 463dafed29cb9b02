"""
Quote adapters: one per pricing-data source.

Every adapter answers get_quote(instrument) with a QuoteData or None. None
means either "this source does not apply to the instrument" or "the source
failed and nothing was cached". Upstream failures never escape an adapter:
they are logged and the last good observation is served instead.

Observations (a yield or an ETF price plus its timestamp) are cached per
upstream symbol; quotes are derived from them per instrument, so two
instruments sharing a symbol keep their own coupon/maturity.
"""
from __future__ import annotations

import logging
import time
import httpx
import numpy as np
import pandas as pd
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .bond_math import price_from_yield, ytm_from_price
from .config import DEFAULT_FRED_OBSERVATIONS_URL, DEFAULT_YAHOO_QUOTE_URL, USER_AGENT
from .instruments import Instrument
from .quotes import QuoteData
from .utils import to_timestamp

logger = logging.getLogger(__name__)

# Errors that mean "this fetch/conversion failed", as opposed to bugs.
SOURCE_ERRORS = (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError)


class QuoteSourceError(ValueError):
    """Upstream answered but the payload holds no usable observation."""


@dataclass(frozen=True)
class Observation:
    value: float
    as_of: pd.Timestamp


@dataclass(frozen=True)
class _CacheEntry:
    observation: Observation
    fetched_at: float

    @property
    def settle(self) -> pd.Timestamp:
        return pd.Timestamp(self.fetched_at, unit="s")


def quote_from_yield(
    instrument: Instrument,
    yield_pct: float,
    as_of: pd.Timestamp,
    source: str,
    settle: pd.Timestamp,
    is_live: bool = True,
) -> QuoteData:
    calc = price_from_yield(instrument.coupon_pct, yield_pct, instrument.maturity_date, settle)
    return QuoteData(
        instrument_key=instrument.instrument_key,
        price_per_100=calc.clean,
        clean=calc.clean,
        dirty=calc.dirty,
        ytm_pct=calc.ytm_pct,
        as_of=as_of,
        source=source,
        is_live=is_live,
    )


class QuoteAdapter(ABC):
    @abstractmethod
    async def get_quote(self, instrument: Instrument) -> Optional[QuoteData]:
        ...

    @abstractmethod
    def adapter_name(self) -> str:
        ...

    async def aclose(self) -> None:
        return None


class CachedQuoteAdapter(QuoteAdapter):
    """
    TTL cache + stale-if-error around a single upstream fetch.

    Subclasses define:
      cache_key(instrument)  -> upstream key, or None when not applicable
      fetch(key, instrument) -> Observation (may raise any SOURCE_ERRORS)
      to_quote(instrument, observation, settle) -> QuoteData
    """

    name: str = ""
    source: str = ""
    ttl_seconds: float = 0.0

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], float]] = None,
        timeout: float = 10.0,
    ):
        self._client = client
        self._owns_client = False
        self._timeout = timeout
        self.clock = clock or time.time
        self._cache: Dict[str, _CacheEntry] = {}

    def adapter_name(self) -> str:
        return self.name

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, headers={"User-Agent": USER_AGENT})
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
            self._owns_client = False

    def settlement(self) -> pd.Timestamp:
        return pd.Timestamp(self.clock(), unit="s")

    @abstractmethod
    def cache_key(self, instrument: Instrument) -> Optional[str]:
        ...

    @abstractmethod
    async def fetch(self, key: str, instrument: Instrument) -> Observation:
        ...

    @abstractmethod
    def to_quote(self, instrument: Instrument, observation: Observation, settle: pd.Timestamp) -> QuoteData:
        ...

    def _convert(self, instrument: Instrument, observation: Observation, settle: pd.Timestamp) -> Optional[QuoteData]:
        try:
            return self.to_quote(instrument, observation, settle)
        except ValueError as e:
            logger.warning("%s: cannot price %s: %s", self.name, instrument.instrument_key, e)
            return None

    async def get_quote(self, instrument: Instrument) -> Optional[QuoteData]:
        key = self.cache_key(instrument)
        if not key:
            return None

        now = self.clock()
        entry = self._cache.get(key)

        # Cached observations are priced as of their fetch so repeat reads match.
        if entry is not None and (now - entry.fetched_at) < self.ttl_seconds:
            return self._convert(instrument, entry.observation, entry.settle)

        settle = pd.Timestamp(now, unit="s")

        try:
            observation = await self.fetch(key, instrument)
            quote = self.to_quote(instrument, observation, settle)
        except SOURCE_ERRORS as e:
            logger.warning("%s: failed to fetch %s for %s: %s", self.name, key, instrument.instrument_key, e)
            if entry is None:
                return None
            return self._convert(instrument, entry.observation, entry.settle)

        self._cache[key] = _CacheEntry(observation, now)
        return quote

    async def _get_json(self, url: str, params: dict):
        response = await self.client.get(url, params=params)
        response.raise_for_status()
        return response.json()


# ---- Yahoo quote endpoint (yields and ETF prices) ----

def _parse_yahoo_quote(data: dict, fallback_time: pd.Timestamp) -> Observation:
    results = data["quoteResponse"]["result"]
    if not results:
        raise QuoteSourceError("No price data available")

    row = results[0]
    if not isinstance(row, dict):
        raise QuoteSourceError(f"Unexpected quote row: {row!r}")
    price = row.get("regularMarketPrice")
    if not price:
        raise QuoteSourceError("No price data available")

    ts = row.get("regularMarketTime")
    as_of = pd.Timestamp(int(ts), unit="s") if ts else fallback_time
    return Observation(value=float(price), as_of=as_of)


class YahooYieldAdapter(CachedQuoteAdapter):
    """Benchmark government yields quoted as tickers (value is a yield in %)."""

    name = "Yahoo Finance"
    source = "Yahoo"
    ttl_seconds = 30.0

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], float]] = None,
        timeout: float = 10.0,
        base_url: str = DEFAULT_YAHOO_QUOTE_URL,
    ):
        super().__init__(client, clock, timeout)
        self.base_url = base_url

    def cache_key(self, instrument: Instrument) -> Optional[str]:
        ys = instrument.pricing_hints.yield_source
        return ys.symbol if ys is not None else None

    async def fetch(self, key: str, instrument: Instrument) -> Observation:
        data = await self._get_json(self.base_url, {"symbols": key})
        return _parse_yahoo_quote(data, self.settlement())

    def to_quote(self, instrument, observation, settle):
        return quote_from_yield(instrument, observation.value, observation.as_of, self.source, settle)


class FredTipsAdapter(CachedQuoteAdapter):
    """Real yields from FRED series (DFII5, DFII10, ...), latest observation only."""

    name = "FRED"
    source = "FRED"
    ttl_seconds = 60.0

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], float]] = None,
        timeout: float = 10.0,
        base_url: str = DEFAULT_FRED_OBSERVATIONS_URL,
    ):
        super().__init__(client, clock, timeout)
        self.api_key = api_key or "demo"
        self.base_url = base_url

    def cache_key(self, instrument: Instrument) -> Optional[str]:
        ys = instrument.pricing_hints.yield_source
        return ys.series if ys is not None else None

    async def fetch(self, key: str, instrument: Instrument) -> Observation:
        data = await self._get_json(
            self.base_url,
            {
                "series_id": key,
                "api_key": self.api_key,
                "file_type": "json",
                "limit": 1,
                "sort_order": "desc",
            },
        )

        observations = data["observations"]
        if not observations:
            raise QuoteSourceError("No yield data available")

        obs = observations[0]
        if not isinstance(obs, dict):
            raise QuoteSourceError(f"Unexpected observation: {obs!r}")
        if obs.get("value") in (None, "", "."):
            raise QuoteSourceError("No yield data available")
        return Observation(value=float(obs["value"]), as_of=to_timestamp(obs["date"]))

    def to_quote(self, instrument, observation, settle):
        return quote_from_yield(instrument, observation.value, observation.as_of, self.source, settle)


# LQD trades around 108-110, HYG around 78-82.
ETF_BASELINES = {"LQD": 109.0, "HYG": 80.0}
DEFAULT_ETF_BASELINE = 80.0
ETF_SENSITIVITY = 0.3


def map_etf_to_bond_price(etf_price: float, symbol: str) -> float:
    """Indicative bond price: 100 plus a damped ETF move off its baseline."""
    baseline = ETF_BASELINES.get(symbol, DEFAULT_ETF_BASELINE)
    return round(100.0 + (etf_price - baseline) * ETF_SENSITIVITY, 2)


class EtfProxyAdapter(CachedQuoteAdapter):
    """Illiquid corporates priced off a bond ETF (value is the ETF price)."""

    name = "ETF Proxy"
    source = "Proxy"
    ttl_seconds = 15.0

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], float]] = None,
        timeout: float = 10.0,
        base_url: str = DEFAULT_YAHOO_QUOTE_URL,
    ):
        super().__init__(client, clock, timeout)
        self.base_url = base_url

    def cache_key(self, instrument: Instrument) -> Optional[str]:
        px = instrument.pricing_hints.proxy
        return px.symbol if px is not None else None

    async def fetch(self, key: str, instrument: Instrument) -> Observation:
        data = await self._get_json(self.base_url, {"symbols": key})
        return _parse_yahoo_quote(data, self.settlement())

    def to_quote(self, instrument, observation, settle):
        symbol = instrument.pricing_hints.proxy.symbol
        indicative_price = map_etf_to_bond_price(observation.value, symbol)
        indicative_yield = ytm_from_price(indicative_price, instrument.coupon_pct, instrument.maturity_date, settle)
        return quote_from_yield(instrument, indicative_yield, observation.as_of, self.source, settle)


# ---- Synthetic fallback ----

MOCK_YIELD_BANDS = {
    "gov": (2.5, 4.5),
    "corp": (4.0, 7.0),
    "infl": (1.5, 2.5),
}
DEFAULT_MOCK_YIELD = 3.0
MOCK_JITTER = 0.1  # total width, i.e. +/-0.05


class MockAdapter(CachedQuoteAdapter):
    """
    Indicative yields drawn from a group band. Always applicable; marks
    quotes as not live.
    """

    name = "Mock"
    source = "Indicative"
    ttl_seconds = 5.0

    def __init__(self, rng: Optional[np.random.Generator] = None, clock: Optional[Callable[[], float]] = None):
        super().__init__(client=None, clock=clock)
        self.rng = rng if rng is not None else np.random.default_rng()

    def cache_key(self, instrument: Instrument) -> Optional[str]:
        return instrument.instrument_key

    def draw_yield(self, group: str) -> float:
        jitter = (self.rng.random() - 0.5) * MOCK_JITTER
        band = MOCK_YIELD_BANDS.get(group)
        if band is None:
            return round(max(0.0, DEFAULT_MOCK_YIELD + jitter), 3)

        low, high = band
        base = low + self.rng.random() * (high - low)
        return round(float(np.clip(base + jitter, low, high)), 3)

    async def fetch(self, key: str, instrument: Instrument) -> Observation:
        return Observation(value=self.draw_yield(instrument.group), as_of=self.settlement())

    def to_quote(self, instrument, observation, settle):
        return quote_from_yield(
            instrument, observation.value, observation.as_of, self.source, settle, is_live=False
        )
