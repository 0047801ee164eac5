from __future__ import annotations

import logging
from typing import Optional

from tradeledger.cache.mirror import PRICE_KEY, CacheMirror
from tradeledger.core.errors import ValidationError
from tradeledger.core.rates.calculator import BUY_KEY, SELL_KEY, RateCalculator, RateSettings
from tradeledger.core.utils.timeutil import Clock, now_ms
from tradeledger.data.settings_repository import SettingsRepository
from tradeledger.data.storage.base import Database

logger = logging.getLogger(__name__)


class RateSettingsStore:
    """
    Durable multipliers behind the RateCalculator.

    Reload is always explicit: on startup, after an admin update, or when
    another process asks for it.
    """

    def __init__(
        self,
        *,
        db: Database,
        calculator: RateCalculator,
        repo: Optional[SettingsRepository] = None,
        cache: Optional[CacheMirror] = None,
        clock: Clock = now_ms,
    ):
        self.db = db
        self.calculator = calculator
        self.repo = repo or SettingsRepository()
        self.cache = cache
        self.clock = clock

    def seed_defaults(self, defaults: RateSettings) -> int:
        with self.db.transaction() as tx:
            return self.repo.insert_defaults(tx, defaults.to_dict(), updated_ms=self.clock())

    def reload(self) -> RateSettings:
        with self.db.transaction() as tx:
            values = self.repo.load(tx, (BUY_KEY, SELL_KEY))
        settings = self.calculator.reload(values)
        if self.cache is not None:
            # cached price payload carries quotes at the old multipliers
            self.cache.delete(PRICE_KEY)
        return settings

    def update(self, *, buy_multiplier: object = None, sell_multiplier: object = None) -> RateSettings:
        """Validate, persist, then hot-reload. Unknown/None values are left unchanged."""
        current = self.calculator.settings
        values: dict[str, object] = {}
        if buy_multiplier is not None:
            values[BUY_KEY] = buy_multiplier
        if sell_multiplier is not None:
            values[SELL_KEY] = sell_multiplier
        if not values:
            raise ValidationError("no multiplier given")

        validated = RateSettings.parse(values, defaults=current)
        changed = {k: v for k, v in validated.to_dict().items() if k in values}

        with self.db.transaction() as tx:
            self.repo.upsert(tx, changed, updated_ms=self.clock())
        logger.info("[RATES] settings updated: %s", changed)
        return self.reload()
