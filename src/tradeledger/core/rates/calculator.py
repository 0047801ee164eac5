# src/tradeledger/core/rates/calculator.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Mapping

from tradeledger.core.errors import ValidationError
from tradeledger.core.models.enums import Side

BUY_KEY = "buy_multiplier"
SELL_KEY = "sell_multiplier"


@dataclass(frozen=True, slots=True)
class RateSettings:
    buy_multiplier: Decimal
    sell_multiplier: Decimal

    @classmethod
    def parse(cls, values: Mapping[str, object], *, defaults: "RateSettings | None" = None) -> "RateSettings":
        buy = values.get(BUY_KEY, defaults.buy_multiplier if defaults else None)
        sell = values.get(SELL_KEY, defaults.sell_multiplier if defaults else None)
        return cls(
            buy_multiplier=_positive_decimal(buy, BUY_KEY),
            sell_multiplier=_positive_decimal(sell, SELL_KEY),
        )

    def to_dict(self) -> dict[str, str]:
        return {BUY_KEY: str(self.buy_multiplier), SELL_KEY: str(self.sell_multiplier)}


@dataclass(frozen=True, slots=True)
class Quote:
    reference_price: int
    buy: int
    sell: int

    def for_side(self, side: Side) -> int:
        return self.buy if side is Side.BUY else self.sell

    def to_dict(self) -> dict[str, int]:
        return {"reference_price": self.reference_price, "buy": self.buy, "sell": self.sell}


def _positive_decimal(value: object, name: str) -> Decimal:
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if not d.is_finite() or d <= 0:
        raise ValidationError(f"{name} must be a positive number, got {value!r}")
    return d


def quote_price(reference_price: int, settings: RateSettings) -> Quote:
    """round(price * multiplier), half away from zero, in exact decimal arithmetic."""
    p = Decimal(int(reference_price))
    return Quote(
        reference_price=int(reference_price),
        buy=int((p * settings.buy_multiplier).to_integral_value(rounding=ROUND_HALF_UP)),
        sell=int((p * settings.sell_multiplier).to_integral_value(rounding=ROUND_HALF_UP)),
    )


class RateCalculator:
    """
    Holds the current RateSettings snapshot.

    quote() reads the snapshot reference once, so a concurrent reload() never
    mixes old and new multipliers inside one quote.
    """

    def __init__(self, settings: RateSettings):
        self._settings = settings
        self._reload_lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @property
    def settings(self) -> RateSettings:
        return self._settings

    def quote(self, reference_price: int) -> Quote:
        return quote_price(reference_price, self._settings)

    def reload(self, values: Mapping[str, object]) -> RateSettings:
        with self._reload_lock:
            new = RateSettings.parse(values, defaults=self._settings)
            old, self._settings = self._settings, new
        if new != old:
            self.logger.info(
                "[RATES] multipliers reloaded buy=%s sell=%s (was buy=%s sell=%s)",
                new.buy_multiplier, new.sell_multiplier, old.buy_multiplier, old.sell_multiplier,
            )
        return new
