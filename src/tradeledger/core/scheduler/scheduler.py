# src/tradeledger/core/scheduler/scheduler.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from tradeledger.cache.mirror import CacheMirror
from tradeledger.core.scheduler.executor import AttemptResult, Outcome, PlanExecutor
from tradeledger.core.utils.timeutil import Clock, days_ms, now_ms
from tradeledger.data.plans_repository import PlansRepository
from tradeledger.data.storage.base import Database
from tradeledger.notifications.events import EventSink, NullSink, emit_user_change

logger = logging.getLogger(__name__)


@dataclass
class PassReport:
    started_ms: int
    purged: int = 0
    results: list[AttemptResult] = field(default_factory=list)
    next_due_ms: Optional[int] = None

    @property
    def due(self) -> int:
        return len(self.results)

    @property
    def traded(self) -> int:
        return sum(1 for r in self.results if r.outcome.traded)

    @property
    def stalled(self) -> bool:
        """Due plans existed but none of them traded."""
        return bool(self.results) and self.traded == 0


class PlanScheduler(threading.Thread):
    """
    ONE timer for all recurring plans.

    Each pass:
      • purges COMPLETED plans past the retention window
      • runs claim/attempt/finalize|revert for every due plan
      • computes the next wake-up from MIN(next_due_ms) of ACTIVE plans

    wake() cuts the current wait short (plan created or resumed).
    """

    def __init__(
        self,
        *,
        db: Database,
        executor: PlanExecutor,
        cache: CacheMirror,
        events: Optional[EventSink] = None,
        plans: Optional[PlansRepository] = None,
        clock: Clock = now_ms,
        max_wait_sec: float = 3600.0,
        retry_backoff_sec: float = 5.0,
        completed_retention_days: float = 7.0,
    ):
        super().__init__(daemon=True, name="PlanScheduler")
        self.db = db
        self.executor = executor
        self.cache = cache
        self.events = events or NullSink()
        self.plans = plans or PlansRepository()
        self.clock = clock
        self.max_wait_sec = float(max_wait_sec)
        self.retry_backoff_sec = float(retry_backoff_sec)
        self.completed_retention_ms = days_ms(completed_retention_days)

        self._stop = threading.Event()
        self._wake = threading.Event()

    # ------------------------------------------------------------------
    def stop(self) -> None:
        self._stop.set()
        self._wake.set()

    def wake(self) -> None:
        self._wake.set()

    def run(self) -> None:
        logger.info(
            "[SCHED] started (max_wait=%ss backoff=%ss)", self.max_wait_sec, self.retry_backoff_sec,
        )
        while not self._stop.is_set():
            report: Optional[PassReport] = None
            try:
                report = self.run_pass()
            except Exception:
                logger.exception("[SCHED] pass failed")

            wait = self.next_wait_sec(report) if report is not None else self.retry_backoff_sec
            self._wake.wait(wait)
            self._wake.clear()
        logger.info("[SCHED] stopped")

    # ------------------------------------------------------------------
    def run_pass(self) -> PassReport:
        report = PassReport(started_ms=self.clock())

        with self.db.transaction() as tx:
            report.purged = self.plans.purge_completed(
                tx, older_than_ms=report.started_ms - self.completed_retention_ms,
            )
        if report.purged:
            logger.info("[SCHED][PURGE] removed %s completed plans", report.purged)

        with self.db.transaction() as tx:
            due = self.plans.list_due(tx, now_ms=report.started_ms)

        for plan in due:
            if self._stop.is_set():
                break
            result = self.executor.run(plan)
            report.results.append(result)
            if result.outcome.traded:
                self._after_trade(result)

        with self.db.transaction() as tx:
            report.next_due_ms = self.plans.next_due_ms(tx)

        if report.results:
            logger.info(
                "[SCHED] pass due=%s traded=%s next_due=%s",
                report.due, report.traded, report.next_due_ms,
            )
        return report

    def next_wait_sec(self, report: PassReport) -> float:
        if report.next_due_ms is None:
            wait = self.max_wait_sec
        else:
            wait = (report.next_due_ms - self.clock()) / 1000.0
            wait = min(max(wait, 0.0), self.max_wait_sec)
        if report.stalled:
            wait = max(wait, self.retry_backoff_sec)
        return wait

    def _after_trade(self, result: AttemptResult) -> None:
        order = result.order
        self.cache.invalidate_user(result.user_id, balance=True, orders=True, plans=True)
        emit_user_change(
            self.events,
            result.user_id,
            action="plan_completed" if result.outcome is Outcome.COMPLETED else "plan_executed",
            orders=True,
            plans=True,
            plan_id=result.plan_id,
            order_id=order.order_id if order else None,
            kind=order.kind.value if order else None,
            quantity_a=order.quantity_a if order else None,
            quantity_b=order.quantity_b if order else None,
            price=order.price if order else None,
        )
