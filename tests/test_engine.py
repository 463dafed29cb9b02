import asyncio

import httpx
import numpy as np
import pandas as pd
import pytest

from bond_quote_engine.adapters import (
    EtfProxyAdapter,
    FredTipsAdapter,
    MockAdapter,
    QuoteAdapter,
    YahooYieldAdapter,
)
from bond_quote_engine.bond_math import price_from_yield
from bond_quote_engine.engine import QuoteEngine
from bond_quote_engine.quotes import QuoteData
from conftest import SETTLE, yahoo_payload


def run(coro):
    return asyncio.run(coro)


def make_quote(key, price=99.5, ytm=4.1, source="Test", is_live=True):
    return QuoteData(
        instrument_key=key,
        price_per_100=price,
        clean=price,
        dirty=price,
        ytm_pct=ytm,
        as_of=SETTLE,
        source=source,
        is_live=is_live,
    )


class ScriptedAdapter(QuoteAdapter):
    """Returns queued results per call; exceptions in the queue are raised."""

    def __init__(self, name, results=None, default=None):
        self.name = name
        self.results = list(results or [])
        self.default = default
        self.calls = 0

    def adapter_name(self):
        return self.name

    async def get_quote(self, instrument):
        self.calls += 1
        result = self.results.pop(0) if self.results else self.default
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(instrument)
        return result


@pytest.fixture
def live_chain(stub_http, clock):
    """Real adapters over a stub transport: Yahoo and FRED fail, LQD trades at 110."""

    def handler(request):
        if "stlouisfed" in request.url.host:
            return httpx.Response(500)
        if request.url.params.get("symbols") == "LQD":
            return httpx.Response(200, json=yahoo_payload(110.0))
        return httpx.Response(404)

    client, seen = stub_http(handler)
    adapters = [
        YahooYieldAdapter(client=client, clock=clock),
        FredTipsAdapter(client=client, clock=clock),
        EtfProxyAdapter(client=client, clock=clock),
        MockAdapter(rng=np.random.default_rng(11), clock=clock),
    ]
    return adapters, seen


def test_proxy_only_instrument_falls_to_proxy(live_chain, make_instrument):
    adapters, _ = live_chain
    engine = QuoteEngine(price_mode="live", adapters=adapters, inter_instrument_delay=0)
    engine.load_instruments([make_instrument(key="CORP", group="corp", coupon=3.0, proxy="LQD")])

    q = run(engine.get_quote("CORP"))
    assert q.source == "Proxy"
    assert engine.get_cached_quote("CORP") == q


def test_failed_yield_source_falls_through_to_proxy(live_chain, make_instrument):
    adapters, seen = live_chain
    engine = QuoteEngine(price_mode="live", adapters=adapters, inter_instrument_delay=0)
    engine.load_instruments([make_instrument(key="CORP", group="corp", series="BAD", proxy="LQD")])

    q = run(engine.get_quote("CORP"))
    assert q.source == "Proxy"
    assert any("stlouisfed" in r.url.host for r in seen), "FRED should have been tried first"


def test_no_hints_ends_at_indicative(live_chain, make_instrument):
    """Gov 4% ten years out with no hints: chain exhausts to the mock source."""
    adapters, seen = live_chain
    engine = QuoteEngine(price_mode="live", adapters=adapters, inter_instrument_delay=0)
    inst = make_instrument(key="GOV", group="gov", coupon=4.0, maturity="2036-02-15")
    engine.load_instruments([inst])

    q = run(engine.get_quote("GOV"))

    assert q.source == "Indicative"
    assert q.is_live is False
    assert 2.5 <= q.ytm_pct <= 4.5
    assert q.clean == price_from_yield(4.0, q.ytm_pct, inst.maturity_date, SETTLE).clean
    assert seen == [], "No upstream call for an instrument without hints"


def test_adapter_exception_skipped(make_instrument):
    broken = ScriptedAdapter("Broken", default=RuntimeError("adapter bug"))
    good = ScriptedAdapter("Good", default=make_quote("K"))
    engine = QuoteEngine(adapters=[broken, good], inter_instrument_delay=0)
    engine.load_instruments([make_instrument(key="K")])

    assert run(engine.get_quote("K")).source == "Test"
    assert broken.calls == 1 and good.calls == 1


def test_first_result_wins(make_instrument):
    first = ScriptedAdapter("First", default=make_quote("K", source="First"))
    second = ScriptedAdapter("Second", default=make_quote("K", source="Second"))
    engine = QuoteEngine(adapters=[first, second], inter_instrument_delay=0)
    engine.load_instruments([make_instrument(key="K")])

    assert run(engine.get_quote("K")).source == "First"
    assert second.calls == 0, "Lower-priority adapters must not be called after a hit"


def test_exhaustion_keeps_previous_quote(make_instrument):
    earlier = make_quote("K", price=101.0)
    adapter = ScriptedAdapter("Flaky", results=[earlier, None])
    engine = QuoteEngine(adapters=[adapter], inter_instrument_delay=0)
    engine.load_instruments([make_instrument(key="K")])

    assert run(engine.get_quote("K")) == earlier
    assert run(engine.get_quote("K")) is None
    assert engine.get_cached_quote("K") == earlier, "Cache is only overwritten on success"


def test_unknown_instrument(make_instrument):
    engine = QuoteEngine(adapters=[ScriptedAdapter("Any", default=make_quote("K"))], inter_instrument_delay=0)
    engine.load_instruments([make_instrument(key="K")])
    assert run(engine.get_quote("MISSING")) is None


def test_mock_mode_short_circuits(live_chain, make_instrument):
    adapters, seen = live_chain
    engine = QuoteEngine(price_mode="mock", adapters=adapters, inter_instrument_delay=0)
    engine.load_instruments([make_instrument(key="CORP", group="corp", proxy="LQD")])

    q = run(engine.get_quote("CORP"))
    assert q.source == "Indicative" and not q.is_live
    assert seen == [], "Mock mode must not touch live sources"
    assert engine.get_cached_quote("CORP") == q


def test_set_price_mode(make_instrument):
    engine = QuoteEngine(adapters=[MockAdapter()], inter_instrument_delay=0)
    assert engine.price_mode == "live"
    engine.set_price_mode("mock")
    assert engine.price_mode == "mock"
    with pytest.raises(ValueError):
        engine.set_price_mode("paper")


def test_duplicate_catalog_keys_rejected(make_instrument):
    engine = QuoteEngine(adapters=[MockAdapter()])
    with pytest.raises(ValueError):
        engine.load_instruments([make_instrument(key="K"), make_instrument(key="K")])


def test_cache_keyed_by_instrument(make_instrument):
    adapter = ScriptedAdapter("Echo", default=lambda inst: make_quote(inst.instrument_key, price=100.0))
    engine = QuoteEngine(adapters=[adapter], inter_instrument_delay=0)
    engine.load_instruments([make_instrument(key="A"), make_instrument(key="B")])

    run(engine.process_all_instruments())
    assert set(engine.get_all_cached_quotes()) == {"A", "B"}, "Same price must not collapse cache entries"


def test_subscribers(make_instrument):
    adapter = ScriptedAdapter("Echo", default=lambda inst: make_quote(inst.instrument_key))
    engine = QuoteEngine(adapters=[adapter], inter_instrument_delay=0)
    engine.load_instruments([make_instrument(key="A"), make_instrument(key="B")])

    seen_a, seen_b = [], []

    def broken(q):
        raise RuntimeError("subscriber bug")

    engine.subscribe(broken)
    unsubscribe_a = engine.subscribe(seen_a.append)
    engine.subscribe(seen_b.append)

    run(engine.get_quote("A"))
    unsubscribe_a()
    run(engine.get_quote("B"))

    assert [q.instrument_key for q in seen_a] == ["A"]
    assert [q.instrument_key for q in seen_b] == ["A", "B"], "A failing subscriber must not block the others"


def test_process_all_instruments(make_instrument, clock):
    engine = QuoteEngine(
        adapters=[MockAdapter(rng=np.random.default_rng(5), clock=clock)],
        inter_instrument_delay=0.001,
    )
    engine.load_instruments(
        [
            make_instrument(key="GOV", group="gov"),
            make_instrument(key="CORP", group="corp"),
            make_instrument(key="OLD", group="gov", maturity="2020-01-01"),
        ]
    )

    quotes = run(engine.process_all_instruments())

    assert [q.instrument_key for q in quotes] == ["GOV", "CORP"], "Matured instrument gets no quote"
    assert engine.get_cached_quote("OLD") is None
    assert len(engine.get_all_cached_prices()) == 2


def test_refresh_skipped_while_running(make_instrument):
    release = None
    started = None

    async def scenario():
        nonlocal release, started
        release = asyncio.Event()
        started = asyncio.Event()

        class SlowAdapter(QuoteAdapter):
            def adapter_name(self):
                return "Slow"

            async def get_quote(self, instrument):
                started.set()
                await release.wait()
                return make_quote(instrument.instrument_key)

        engine = QuoteEngine(adapters=[SlowAdapter()], inter_instrument_delay=0)
        engine.load_instruments([make_instrument(key="K")])

        first = asyncio.create_task(engine.refresh_if_idle())
        await started.wait()
        assert engine.refresh_running

        skipped = await engine.refresh_if_idle()
        release.set()
        done = await first
        return skipped, done, engine.refresh_running

    skipped, done, still_running = run(scenario())
    assert skipped is None, "Overlapping pass must be skipped"
    assert [q.instrument_key for q in done] == ["K"]
    assert not still_running


def test_diversity_empty_cache():
    engine = QuoteEngine(adapters=[MockAdapter()])
    report = engine.validate_quote_diversity()
    assert not report.is_valid
    assert report.warnings == ["No quotes available"]


def test_diversity_flags_placeholder_ytm(make_instrument):
    prices = iter(np.linspace(95.0, 105.0, 20).round(2))
    adapter = ScriptedAdapter("Flat", default=lambda inst: make_quote(inst.instrument_key, price=next(prices), ytm=3.0))
    engine = QuoteEngine(adapters=[adapter], inter_instrument_delay=0)
    engine.load_instruments([make_instrument(key=f"K{i:02d}") for i in range(20)])
    run(engine.process_all_instruments())

    report = engine.validate_quote_diversity()
    assert not report.is_valid
    assert any("placeholder YTM" in w for w in report.warnings)
    assert any("identical YTM" in w for w in report.warnings)
    assert not any("price" in w for w in report.warnings), "Prices are diverse"


def test_diversity_flags_placeholder_price(make_instrument):
    ytms = iter(np.linspace(2.0, 6.0, 10).round(3))
    adapter = ScriptedAdapter("Par", default=lambda inst: make_quote(inst.instrument_key, price=100.0, ytm=next(ytms)))
    engine = QuoteEngine(adapters=[adapter], inter_instrument_delay=0)
    engine.load_instruments([make_instrument(key=f"K{i}") for i in range(10)])
    run(engine.process_all_instruments())

    report = engine.validate_quote_diversity()
    assert not report.is_valid
    assert any("placeholder prices" in w for w in report.warnings)


def test_diversity_ok_on_mock_quotes(make_instrument, clock):
    engine = QuoteEngine(adapters=[MockAdapter(rng=np.random.default_rng(9), clock=clock)], inter_instrument_delay=0)
    engine.load_instruments(
        [make_instrument(key=f"K{i}", group=g, coupon=2.0 + i * 0.25) for i, g in enumerate(["gov", "corp", "infl"] * 4)]
    )
    run(engine.process_all_instruments())

    report = engine.validate_quote_diversity()
    assert report.is_valid, report.warnings


def test_frames(make_instrument):
    adapter = ScriptedAdapter(
        "Mixed",
        results=[make_quote("A", source="Yahoo"), make_quote("B", source="Yahoo"), make_quote("C", source="Indicative", is_live=False)],
    )
    engine = QuoteEngine(adapters=[adapter], inter_instrument_delay=0)
    engine.load_instruments([make_instrument(key=k) for k in "ABC"])
    run(engine.process_all_instruments())

    frame = engine.quotes_frame()
    assert list(frame["instrument_key"]) == ["A", "B", "C"]

    stats = engine.adapter_stats().set_index("source")
    assert stats.loc["Yahoo", "count"] == 2
    assert stats.loc["Indicative", "count"] == 1
    assert stats.loc["Yahoo", "last_update"] == SETTLE


def test_default_adapter_order():
    engine = QuoteEngine(price_mode="live")
    try:
        assert [a.adapter_name() for a in engine.adapters] == ["Yahoo Finance", "FRED", "ETF Proxy", "Mock"]
    finally:
        run(engine.aclose())
