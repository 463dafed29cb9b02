import httpx
import pandas as pd
import pytest

from bond_quote_engine.instruments import Instrument, PricingHints, ProxyHint, YieldSource

SETTLE = pd.Timestamp("2026-02-15")


class FakeClock:
    def __init__(self, t: float):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


@pytest.fixture
def clock():
    return FakeClock(SETTLE.timestamp())


@pytest.fixture
def make_instrument():
    def _make(key="INST", group="gov", coupon=4.0, maturity="2036-02-15", symbol=None, series=None, proxy=None):
        yield_source = None
        if symbol or series:
            yield_source = YieldSource(type="fred" if series else "yahoo", symbol=symbol, series=series)
        return Instrument(
            group=group,
            instrument_key=key,
            display_name=key,
            country_or_issuer="Test",
            currency="USD",
            coupon_pct=coupon,
            maturity_date=pd.Timestamp(maturity),
            pricing_hints=PricingHints(
                yield_source=yield_source,
                proxy=ProxyHint(type="yahoo", symbol=proxy) if proxy else None,
            ),
        )

    return _make


@pytest.fixture
def stub_http():
    """
    stub_http(handler) -> (AsyncClient, list of seen requests).
    handler(request) returns an httpx.Response.
    """

    def _make(handler):
        seen = []

        def _record(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return handler(request)

        return httpx.AsyncClient(transport=httpx.MockTransport(_record)), seen

    return _make


def yahoo_payload(price, ts=1771113600):
    return {"quoteResponse": {"result": [{"symbol": "X", "regularMarketPrice": price, "regularMarketTime": ts}]}}
