from __future__ import annotations

import json
import pandas as pd
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .utils import to_timestamp

GROUPS = ("gov", "corp", "infl")


@dataclass(frozen=True)
class YieldSource:
    type: str  # "yahoo" | "fred"
    symbol: Optional[str] = None
    series: Optional[str] = None


@dataclass(frozen=True)
class ProxyHint:
    type: str
    symbol: str


@dataclass(frozen=True)
class PricingHints:
    yield_source: Optional[YieldSource] = None
    proxy: Optional[ProxyHint] = None


@dataclass(frozen=True)
class Instrument:
    group: str
    instrument_key: str
    display_name: str
    country_or_issuer: str
    currency: str
    coupon_pct: float
    maturity_date: pd.Timestamp
    pricing_hints: PricingHints = field(default_factory=PricingHints)


def _parse_hints(raw: Optional[dict]) -> PricingHints:
    if not raw:
        return PricingHints()

    ys = raw.get("yieldSource")
    px = raw.get("proxy")

    yield_source = None
    if ys:
        yield_source = YieldSource(type=str(ys.get("type", "")), symbol=ys.get("symbol"), series=ys.get("series"))

    proxy = None
    if px and px.get("symbol"):
        proxy = ProxyHint(type=str(px.get("type", "yahoo")), symbol=str(px["symbol"]))

    return PricingHints(yield_source=yield_source, proxy=proxy)


def instrument_from_dict(row: dict) -> Instrument:
    """
    Build an Instrument from one catalog row (camelCase JSON shape).

    Unknown groups are accepted (they price off the default mock yield) but
    the key, coupon and maturity are required.
    """
    key = row.get("instrumentKey")
    if not key:
        raise ValueError(f"Catalog row without instrumentKey: {row!r}")

    try:
        coupon = float(row["couponPct"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"{key}: missing or invalid couponPct") from e

    if not (-1.0 <= coupon <= 25.0):
        raise ValueError(f"{key}: coupon out of plausible range.")

    try:
        maturity = to_timestamp(row["maturityDate"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"{key}: missing or invalid maturityDate") from e

    return Instrument(
        group=str(row.get("group", "")),
        instrument_key=str(key),
        display_name=str(row.get("displayName", key)),
        country_or_issuer=str(row.get("countryOrIssuer", "")),
        currency=str(row.get("currency", "USD")),
        coupon_pct=coupon,
        maturity_date=maturity,
        pricing_hints=_parse_hints(row.get("pricingHints")),
    )


def index_instruments(instruments: Iterable[Instrument]) -> Dict[str, Instrument]:
    """Key -> instrument, rejecting duplicate keys."""
    out: Dict[str, Instrument] = {}
    for inst in instruments:
        if inst.instrument_key in out:
            raise ValueError(f"Duplicate instrument key: {inst.instrument_key}")
        out[inst.instrument_key] = inst
    return out


def load_catalog(path: Union[str, Path]) -> List[Instrument]:
    with open(path, "r", encoding="utf-8") as fh:
        rows = json.load(fh)

    if not isinstance(rows, list):
        raise ValueError(f"{path}: catalog must be a JSON array")

    instruments = [instrument_from_dict(r) for r in rows]
    index_instruments(instruments)
    return instruments
