from __future__ import annotations

import pandas as pd
from typing import Optional, Tuple

DAYS_PER_YEAR = 365.25


def to_timestamp(value) -> pd.Timestamp:
    """
    Coerce a date-like value to a tz-naive UTC pd.Timestamp.

    Catalog maturities are plain dates while settlement defaults to "now",
    so everything is compared on the same naive UTC axis.
    """
    ts = pd.Timestamp(value)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def utc_now() -> pd.Timestamp:
    return pd.Timestamp.now(tz="UTC").tz_localize(None)


def resolve_settlement(settlement: Optional[pd.Timestamp] = None) -> pd.Timestamp:
    if settlement is None:
        return utc_now()
    return to_timestamp(settlement)


def years_between(start: pd.Timestamp, end: pd.Timestamp) -> float:
    """ACT/365.25 year fraction. Negative when end precedes start."""
    delta = to_timestamp(end) - to_timestamp(start)
    return delta / pd.Timedelta(days=1) / DAYS_PER_YEAR


def months_per_period(freq: int) -> int:
    if freq <= 0:
        raise ValueError("freq must be positive")
    if 12 % freq != 0:
        raise ValueError(f"Unsupported coupon frequency: {freq}")
    return 12 // freq


def coupon_period_bounds(
    settle: pd.Timestamp,
    maturity: pd.Timestamp,
    freq: int = 2,
) -> Tuple[pd.Timestamp, pd.Timestamp]:
    """
    (last coupon on or before settlement, next coupon after it), schedule
    anchored at maturity.

    Each candidate is offset from maturity directly (maturity - k periods) so
    month-end maturities do not drift to the 28th after passing February.
    """
    months = months_per_period(freq)
    settle = to_timestamp(settle)
    maturity = to_timestamp(maturity)

    k = 0
    d = maturity
    later = maturity
    while d > settle:
        later = d
        k += 1
        d = maturity - pd.DateOffset(months=months * k)
    return d, later

