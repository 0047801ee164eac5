# src/tradeledger/data/retention/retention_worker.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from tradeledger.core.utils.timeutil import Clock, days_ms, now_ms
from tradeledger.data.market_repository import MarketRepository
from tradeledger.data.plans_repository import PlansRepository
from tradeledger.data.storage.base import Database
from tradeledger.market_state.price_source import CHART_DAYS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetentionPolicy:
    price_ticks_keep: int = 10_000
    charts_keep: int = 2
    completed_plans_days: float = 7.0


class _DryRun(Exception):
    """Raised inside the cleanup transaction to roll it back after counting."""


class RetentionWorker(threading.Thread):
    """Bounded history: price ticks, chart series, completed plans. Orders are never deleted here."""

    def __init__(
        self,
        *,
        db: Database,
        policy: RetentionPolicy,
        market: Optional[MarketRepository] = None,
        plans: Optional[PlansRepository] = None,
        clock: Clock = now_ms,
        run_sec: float = 3600.0,
    ):
        super().__init__(daemon=True, name="RetentionWorker")
        self.db = db
        self.policy = policy
        self.market = market or MarketRepository()
        self.plans = plans or PlansRepository()
        self.clock = clock
        self.run_sec = float(run_sec)
        self._stop = threading.Event()

    def stop(self) -> None:
        self._stop.set()

    def run(self) -> None:
        logger.info("[RETENTION] worker started (every %ss)", self.run_sec)
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.exception("[RETENTION] error: %s", e)
            self._stop.wait(self.run_sec)

    def run_once(self, *, dry_run: bool = False) -> dict[str, int]:
        """Delete (or, with dry_run, only count) rows past the policy. One transaction."""
        res: dict[str, int] = {}
        try:
            with self.db.transaction() as tx:
                res["price_ticks"] = self.market.trim_ticks(tx, keep=self.policy.price_ticks_keep)
                res["chart_series"] = sum(
                    self.market.trim_charts(tx, tf, keep=self.policy.charts_keep) for tf in CHART_DAYS
                )
                res["completed_plans"] = self.plans.purge_completed(
                    tx, older_than_ms=self.clock() - days_ms(self.policy.completed_plans_days),
                )
                if dry_run:
                    raise _DryRun()
        except _DryRun:
            pass

        logger.info("[RETENTION] %s %s", "would delete" if dry_run else "deleted", res)
        return res
