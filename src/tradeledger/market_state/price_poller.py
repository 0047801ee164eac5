# src/tradeledger/market_state/price_poller.py
from __future__ import annotations

import logging
import threading
from typing import Optional

from tradeledger.cache.mirror import CacheMirror
from tradeledger.core.errors import PriceFetchError
from tradeledger.core.matching.matcher import LimitOrderMatcher, MatchReport
from tradeledger.core.read_model import ReadModel
from tradeledger.core.utils.timeutil import Clock, now_ms
from tradeledger.data.market_repository import MarketRepository
from tradeledger.data.storage.base import Database
from tradeledger.market_state.price_source import PriceSource
from tradeledger.notifications.events import EventKind, EventSink, LedgerEvent, NullSink

logger = logging.getLogger(__name__)


class PricePoller(threading.Thread):
    """
    ONE poller for the reference price.

    Each tick: fetch -> store -> cache -> broadcast -> match.
    A failed fetch skips the tick; the previous price stays in place and no
    settlement runs against it.
    """

    def __init__(
        self,
        *,
        source: PriceSource,
        db: Database,
        cache: CacheMirror,
        reads: ReadModel,
        matcher: LimitOrderMatcher,
        events: Optional[EventSink] = None,
        market: Optional[MarketRepository] = None,
        clock: Clock = now_ms,
        poll_sec: float = 30.0,
    ):
        super().__init__(daemon=True, name="PricePoller")
        self.source = source
        self.db = db
        self.cache = cache
        self.reads = reads
        self.matcher = matcher
        self.events = events or NullSink()
        self.market = market or MarketRepository()
        self.clock = clock
        self.poll_sec = float(poll_sec)
        self._stop = threading.Event()

    def stop(self) -> None:
        self._stop.set()

    def run(self) -> None:
        logger.info("[PRICE] poller started (every %ss)", self.poll_sec)
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.exception("[PRICE] poll error: %s", e)
            self._stop.wait(self.poll_sec)

    def poll_once(self) -> Optional[MatchReport]:
        try:
            price = self.source.fetch_reference_price()
        except PriceFetchError as e:
            logger.warning("[PRICE] fetch failed, tick skipped: %s", e)
            return None
        return self.on_price(price)

    def on_price(self, reference_price: int) -> MatchReport:
        observed = self.clock()
        with self.db.transaction() as tx:
            self.market.insert_tick(tx, reference_price=reference_price, observed_ms=observed)

        payload = self.reads.price_payload(reference_price, observed)
        self.cache.set_price(payload)
        self.events.emit(LedgerEvent(EventKind.PRICE, None, payload))
        logger.debug("[PRICE] ref=%s buy=%s sell=%s", reference_price, payload["buy"], payload["sell"])

        return self.matcher.on_tick(reference_price)
