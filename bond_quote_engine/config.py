"""
Runtime configuration, read from the environment (and a local .env file).

PRICE_MODE                    live | mock
FRED_API_KEY                  FRED key, "demo" when unset
YAHOO_QUOTE_URL               quote-by-symbol endpoint
FRED_OBSERVATIONS_URL         series observations endpoint
QUOTE_REQUEST_TIMEOUT         per-request timeout, seconds
QUOTE_REFRESH_INTERVAL        scheduler interval, seconds
QUOTE_INTER_INSTRUMENT_DELAY  pause between instruments in a pass, seconds
LOG_LEVEL                     logging level name
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

PRICE_MODES = ("live", "mock")

DEFAULT_YAHOO_QUOTE_URL = "https://query1.finance.yahoo.com/v7/finance/quote"
DEFAULT_FRED_OBSERVATIONS_URL = "https://api.stlouisfed.org/fred/series/observations"
USER_AGENT = "Mozilla/5.0 (compatible; YieldDesk/1.0)"


@dataclass(frozen=True)
class EngineSettings:
    price_mode: str = "live"
    fred_api_key: str = "demo"
    yahoo_quote_url: str = DEFAULT_YAHOO_QUOTE_URL
    fred_observations_url: str = DEFAULT_FRED_OBSERVATIONS_URL
    request_timeout: float = 10.0
    refresh_interval: float = 30.0
    inter_instrument_delay: float = 0.05
    log_level: str = "INFO"


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value < 0:
        raise ValueError(f"{name} must be non-negative")
    return value


def validate_price_mode(mode: str) -> str:
    mode = (mode or "").strip().lower()
    if mode not in PRICE_MODES:
        raise ValueError(f"Unsupported price mode: {mode!r} (expected one of {PRICE_MODES})")
    return mode


def load_settings(env: Optional[Mapping[str, str]] = None) -> EngineSettings:
    """
    Build settings from `env`, or from os.environ after loading .env when
    no mapping is given.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    return EngineSettings(
        price_mode=validate_price_mode(env.get("PRICE_MODE", "live")),
        fred_api_key=env.get("FRED_API_KEY") or "demo",
        yahoo_quote_url=env.get("YAHOO_QUOTE_URL") or DEFAULT_YAHOO_QUOTE_URL,
        fred_observations_url=env.get("FRED_OBSERVATIONS_URL") or DEFAULT_FRED_OBSERVATIONS_URL,
        request_timeout=_float_env(env, "QUOTE_REQUEST_TIMEOUT", 10.0),
        refresh_interval=_float_env(env, "QUOTE_REFRESH_INTERVAL", 30.0),
        inter_instrument_delay=_float_env(env, "QUOTE_INTER_INSTRUMENT_DELAY", 0.05),
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
