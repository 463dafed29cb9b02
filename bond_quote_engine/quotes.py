from __future__ import annotations

import pandas as pd
from dataclasses import asdict, dataclass, field
from typing import Iterable, List

PLACEHOLDER_YTM = 3.0
PLACEHOLDER_PRICE = 100.0

QUOTE_COLUMNS = ["instrument_key", "price_per_100", "clean", "dirty", "ytm_pct", "as_of", "source", "is_live"]


@dataclass(frozen=True)
class QuoteData:
    instrument_key: str
    price_per_100: float
    clean: float
    dirty: float
    ytm_pct: float
    as_of: pd.Timestamp
    source: str
    is_live: bool


@dataclass(frozen=True)
class DiversityReport:
    is_valid: bool
    warnings: List[str] = field(default_factory=list)


def quotes_frame(quotes: Iterable[QuoteData]) -> pd.DataFrame:
    rows = [asdict(q) for q in quotes]
    return pd.DataFrame(rows, columns=QUOTE_COLUMNS)


def source_stats(quotes: Iterable[QuoteData]) -> pd.DataFrame:
    """Per-source quote count and latest observation time."""
    df = quotes_frame(quotes)
    if df.empty:
        return pd.DataFrame(columns=["source", "count", "last_update"])

    out = df.groupby("source", as_index=False).agg(
        count=("instrument_key", "size"),
        last_update=("as_of", "max"),
    )
    return out.sort_values("source").reset_index(drop=True)


def check_quote_diversity(quotes: Iterable[QuoteData]) -> DiversityReport:
    """
    Placeholder detection over a quote snapshot.

    Flags an empty set, < 10% distinct yields or prices, and a majority of
    yields at 3.0 or prices at 100.0 (the fallback placeholders).
    Diagnostic only.
    """
    df = quotes_frame(quotes)
    warnings: List[str] = []

    n = len(df)
    if n == 0:
        return DiversityReport(False, ["No quotes available"])

    unique_ytm = df["ytm_pct"].nunique()
    if unique_ytm < n * 0.1:
        warnings.append(f"Too many identical YTM values: {unique_ytm} unique out of {n}")

    unique_px = df["price_per_100"].nunique()
    if unique_px < n * 0.1:
        warnings.append(f"Too many identical prices: {unique_px} unique out of {n}")

    placeholder_ytm = int((df["ytm_pct"] == PLACEHOLDER_YTM).sum())
    placeholder_px = int((df["price_per_100"] == PLACEHOLDER_PRICE).sum())

    if placeholder_ytm > n * 0.5:
        warnings.append(f"Too many placeholder YTM values ({PLACEHOLDER_YTM:.2f}%): {placeholder_ytm}")

    if placeholder_px > n * 0.5:
        warnings.append(f"Too many placeholder prices ({PLACEHOLDER_PRICE:.2f}): {placeholder_px}")

    return DiversityReport(is_valid=not warnings, warnings=warnings)
