# src/tradeledger/market_state/chart_poller.py
from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from tradeledger.cache.mirror import CacheMirror
from tradeledger.core.errors import LedgerError
from tradeledger.data.market_repository import MarketRepository
from tradeledger.data.storage.base import Database
from tradeledger.market_state.price_source import PriceSource

logger = logging.getLogger(__name__)

# timeframe -> (startup delay, refresh interval), seconds
DEFAULT_SCHEDULE: dict[str, tuple[float, float]] = {
    "1d": (5 * 60, 3600),
    "7d": (10 * 60, 6 * 3600),
    "30d": (15 * 60, 12 * 3600),
    "90d": (20 * 60, 18 * 3600),
    "365d": (25 * 60, 24 * 3600),
}


class ChartPoller(threading.Thread):
    """
    Refreshes chart series per timeframe on staggered intervals.
    Keeps the last `keep` series per timeframe in the store.
    """

    def __init__(
        self,
        *,
        source: PriceSource,
        db: Database,
        cache: CacheMirror,
        market: Optional[MarketRepository] = None,
        schedule: Optional[dict[str, tuple[float, float]]] = None,
        keep: int = 2,
        tick_sec: float = 30.0,
    ):
        super().__init__(daemon=True, name="ChartPoller")
        self.source = source
        self.db = db
        self.cache = cache
        self.market = market or MarketRepository()
        self.schedule = dict(schedule or DEFAULT_SCHEDULE)
        self.keep = int(keep)
        self.tick_sec = float(tick_sec)
        self._stop = threading.Event()

    def stop(self) -> None:
        self._stop.set()

    def run(self) -> None:
        logger.info("[CHART] poller started: %s", ", ".join(self.schedule))
        started = time.monotonic()
        next_run = {tf: started + delay for tf, (delay, _) in self.schedule.items()}

        while not self._stop.is_set():
            now = time.monotonic()
            for tf, due in next_run.items():
                if now < due:
                    continue
                try:
                    self.refresh(tf)
                except LedgerError as e:
                    logger.warning("[CHART] %s refresh failed: %s", tf, e)
                except Exception as e:
                    logger.exception("[CHART] %s refresh error: %s", tf, e)
                next_run[tf] = now + self.schedule[tf][1]
            self._stop.wait(self.tick_sec)

    def refresh(self, timeframe: str) -> dict:
        series = self.source.fetch_chart(timeframe)
        with self.db.transaction() as tx:
            self.market.insert_chart(tx, series)
            self.market.trim_charts(tx, timeframe, keep=self.keep)
        self.cache.set_chart(timeframe, series)
        logger.info("[CHART] %s updated (%s points)", timeframe, len(series["points"]))
        return series
