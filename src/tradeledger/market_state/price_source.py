# src/tradeledger/market_state/price_source.py
from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

import requests

from tradeledger.core.errors import PriceFetchError, ValidationError

BASE_URL = "https://api.coingecko.com/api/v3"

CHART_DAYS: dict[str, int] = {
    "1d": 1,
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "365d": 365,
}

log = logging.getLogger("tradeledger.market_state.price_source")


class PriceSource(ABC):
    """Pull-based reference price feed. Every failure surfaces as PriceFetchError."""

    @abstractmethod
    def fetch_reference_price(self) -> int: ...

    @abstractmethod
    def fetch_chart(self, timeframe: str) -> dict[str, Any]: ...


def to_price_units(value: Any, scale: int) -> int:
    """Quote-currency amount -> integer smallest units of B, half away from zero."""
    try:
        d = Decimal(str(value)) * int(scale)
    except (InvalidOperation, ValueError) as e:
        raise PriceFetchError(f"unparseable price {value!r}") from e
    units = int(d.to_integral_value(rounding=ROUND_HALF_UP))
    if units <= 0:
        raise PriceFetchError(f"non-positive price {value!r}")
    return units


class CoinGeckoPriceSource(PriceSource):
    """
    Public CoinGecko REST client with retry/backoff for 429/5xx.

    scale converts the API's quote-currency price into smallest units of B
    (e.g. 100 when B is kept in cents).
    """

    def __init__(
        self,
        *,
        coin_id: str = "bitcoin",
        vs_currency: str = "usd",
        scale: int = 1,
        base_url: str = BASE_URL,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_base: float = 1.5,
        clock=time.time,
    ):
        self.coin_id = coin_id
        self.vs_currency = vs_currency.lower()
        self.scale = int(scale)
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.max_retries = max(1, int(max_retries))
        self.backoff_base = float(backoff_base)
        self.clock = clock
        self.sess = requests.Session()

    # ---------------------------------------------------------------------
    # CORE REQUEST (WITH BACKOFF)
    # ---------------------------------------------------------------------
    def _get(self, path: str, *, params: dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        last_err: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                r = self.sess.get(url, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                last_err = e
            else:
                if r.status_code == 429 or r.status_code >= 500:
                    last_err = PriceFetchError(f"HTTP {r.status_code} GET {path}")
                elif r.status_code >= 400:
                    raise PriceFetchError(f"HTTP {r.status_code} GET {path}: {r.text[:300]}")
                else:
                    try:
                        return r.json()
                    except ValueError as e:
                        raise PriceFetchError(f"invalid JSON from GET {path}") from e

            if attempt < self.max_retries:
                sleep = self.backoff_base * attempt
                log.warning(
                    "CoinGecko request error (GET %s), retry %d/%d, sleep %.1fs | %r",
                    path, attempt, self.max_retries, sleep, last_err,
                )
                time.sleep(sleep)

        raise PriceFetchError(f"GET {path} failed after {self.max_retries} attempts | last_err={last_err!r}")

    # ---------------------------------------------------------------------
    # API METHODS
    # ---------------------------------------------------------------------
    def fetch_reference_price(self) -> int:
        data = self._get("/simple/price", params={"ids": self.coin_id, "vs_currencies": self.vs_currency})
        try:
            raw = data[self.coin_id][self.vs_currency]
        except (KeyError, TypeError) as e:
            raise PriceFetchError(f"price missing in response: {data!r}"[:300]) from e
        return to_price_units(raw, self.scale)

    def fetch_chart(self, timeframe: str) -> dict[str, Any]:
        days = CHART_DAYS.get(timeframe)
        if days is None:
            raise ValidationError(f"unknown chart timeframe {timeframe!r}")

        data = self._get(
            f"/coins/{self.coin_id}/market_chart",
            params={"vs_currency": self.vs_currency, "days": days},
        )
        try:
            points = [[int(ts), to_price_units(price, self.scale)] for ts, price in data["prices"]]
        except (KeyError, TypeError, ValueError) as e:
            raise PriceFetchError(f"malformed chart response for {timeframe}") from e
        return build_series(timeframe, points, fetched_ms=int(self.clock() * 1000))


def build_series(timeframe: str, points: list[list[int]], *, fetched_ms: int) -> dict[str, Any]:
    change_pct = None
    if points and points[0][1]:
        change_pct = round((points[-1][1] - points[0][1]) / points[0][1] * 100, 4)
    return {
        "timeframe": timeframe,
        "points": points,
        "change_pct": change_pct,
        "from_ms": points[0][0] if points else None,
        "to_ms": points[-1][0] if points else None,
        "fetched_ms": int(fetched_ms),
    }
