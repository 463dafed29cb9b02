from __future__ import annotations

import math
import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Optional

from .utils import (
    coupon_period_bounds,
    months_per_period,
    resolve_settlement,
    to_timestamp,
    years_between,
)

FACE = 100.0


@dataclass(frozen=True)
class BondCalc:
    clean: float
    dirty: float
    ytm_pct: float


def _years_to_maturity(maturity_date, settle: pd.Timestamp) -> float:
    years = years_between(settle, maturity_date)
    if years <= 0:
        raise ValueError(f"Instrument matured on/before settlement ({to_timestamp(maturity_date).date()}).")
    return years


def accrued_per_100(
    coupon_pct: float,
    maturity_date,
    settle: pd.Timestamp,
    frequency: int = 2,
) -> float:
    """Accrued coupon per 100 face, actual days over actual days in the period."""
    t_prev, t_next = coupon_period_bounds(settle, maturity_date, frequency)

    days_since = (settle - t_prev) / pd.Timedelta(days=1)
    days_in_period = (t_next - t_prev) / pd.Timedelta(days=1)
    if days_in_period <= 0:
        raise ValueError("Invalid coupon period length from schedule.")

    return (coupon_pct / frequency) * (days_since / days_in_period)


def price_from_yield(
    coupon_pct: float,
    yield_pct: float,
    maturity_date,
    settlement_date: Optional[pd.Timestamp] = None,
    frequency: int = 2,
) -> BondCalc:
    """
    Clean/dirty price per 100 from a yield (both in percent).

    Cashflows are discounted on whole periods: ceil(years * frequency)
    coupons plus principal at the last one. Accrued uses the
    maturity-anchored schedule around settlement.

    Raises ValueError when the instrument has matured at settlement.
    """
    months_per_period(frequency)
    settle = resolve_settlement(settlement_date)
    years = _years_to_maturity(maturity_date, settle)

    periods = math.ceil(years * frequency)
    coupon = coupon_pct / frequency

    i = np.arange(1, periods + 1, dtype=float)
    dfs = (1.0 + (yield_pct / 100.0) / frequency) ** -i

    clean = float(coupon * dfs.sum() + FACE * dfs[-1])
    dirty = clean + accrued_per_100(coupon_pct, maturity_date, settle, frequency)

    return BondCalc(
        clean=round(clean, 2),
        dirty=round(dirty, 2),
        ytm_pct=round(float(yield_pct), 3),
    )


def ytm_from_price(
    price: float,
    coupon_pct: float,
    maturity_date,
    settlement_date: Optional[pd.Timestamp] = None,
    frequency: int = 2,
) -> float:
    """
    Approximate yield (percent) from a clean price.

    Closed form: (C + (100 - P) / n) / ((100 + P) / 2). Good to a few
    percent relative for vanilla bullets; use solve_ytm where precision
    matters. frequency is accepted for signature symmetry only.
    """
    months_per_period(frequency)
    settle = resolve_settlement(settlement_date)
    years = _years_to_maturity(maturity_date, settle)

    approx = (coupon_pct + (FACE - price) / years) / ((FACE + price) / 2.0)
    return round(approx * 100.0, 3)


# ---- Newton-Raphson solver (decimal rates, fractional periods) ----

def calculate_bond_price(
    face_value: float,
    coupon_rate: float,
    coupon_frequency: int,
    years_to_maturity: float,
    ytm: float,
) -> float:
    coupon = face_value * coupon_rate / coupon_frequency
    periods = years_to_maturity * coupon_frequency
    r = ytm / coupon_frequency

    if r != 0.0:
        pv_coupons = coupon * (1.0 - (1.0 + r) ** -periods) / r
    else:
        pv_coupons = coupon * periods

    return pv_coupons + face_value / (1.0 + r) ** periods


def solve_ytm(
    face_value: float,
    current_price: float,
    coupon_rate: float,
    coupon_frequency: int,
    years_to_maturity: float,
    tol: float = 1e-6,
    max_iter: int = 100,
    bump: float = 1e-4,
) -> float:
    """
    Yield (decimal) reproducing current_price, by Newton-Raphson.

    Starts from the coupon rate; derivative by forward difference. A flat
    derivative stops the iteration and the last iterate is returned as is.
    """
    if years_to_maturity <= 0:
        raise ValueError("years_to_maturity must be positive")
    if coupon_frequency <= 0:
        raise ValueError("coupon_frequency must be positive")

    ytm = coupon_rate
    for _ in range(max_iter):
        price = calculate_bond_price(face_value, coupon_rate, coupon_frequency, years_to_maturity, ytm)
        diff = price - current_price
        if abs(diff) < tol:
            break

        price_up = calculate_bond_price(face_value, coupon_rate, coupon_frequency, years_to_maturity, ytm + bump)
        derivative = (price_up - price) / bump
        if abs(derivative) < 1e-10:
            break

        ytm = ytm - diff / derivative

    return ytm
