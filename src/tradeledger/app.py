# src/tradeledger/app.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import redis

from tradeledger.cache.mirror import CacheMirror, CacheTTLs
from tradeledger.config import RatesConfig, SchedulerConfig
from tradeledger.core.ledger.ledger import BalanceLedger
from tradeledger.core.matching.matcher import LimitOrderMatcher
from tradeledger.core.orders.service import OrderService
from tradeledger.core.plans.service import PlanService
from tradeledger.core.rates.calculator import RateCalculator
from tradeledger.core.rates.settings_store import RateSettingsStore
from tradeledger.core.read_model import ReadModel
from tradeledger.core.scheduler.executor import PlanExecutor
from tradeledger.core.scheduler.scheduler import PlanScheduler
from tradeledger.core.utils.timeutil import Clock, now_ms
from tradeledger.data.storage.base import Database
from tradeledger.notifications.dispatcher import NotificationDispatcher
from tradeledger.notifications.transports import PushTransport

logger = logging.getLogger(__name__)


@dataclass
class LedgerApp:
    """Everything the API layer and the workers share. Built once per process."""

    db: Database
    cache: CacheMirror
    calculator: RateCalculator
    settings: RateSettingsStore
    ledger: BalanceLedger
    reads: ReadModel
    dispatcher: NotificationDispatcher
    orders: OrderService
    plans: PlanService
    matcher: LimitOrderMatcher
    executor: PlanExecutor
    scheduler: PlanScheduler


def build_app(
    *,
    db: Database,
    redis_client: Optional[redis.Redis],
    transport: PushTransport,
    rates: RatesConfig,
    scheduler: SchedulerConfig,
    ttls: Optional[CacheTTLs] = None,
    clock: Clock = now_ms,
    queue_maxsize: int = 10_000,
) -> LedgerApp:
    """Wire the core against an already-migrated store. Nothing is started here."""
    cache = CacheMirror(redis_client, ttls=ttls)
    calculator = RateCalculator(rates.defaults)
    settings = RateSettingsStore(db=db, calculator=calculator, cache=cache, clock=clock)
    settings.seed_defaults(rates.defaults)
    settings.reload()

    ledger = BalanceLedger(db=db, clock=clock)
    reads = ReadModel(db=db, cache=cache, ledger=ledger, calculator=calculator)
    dispatcher = NotificationDispatcher(transport=transport, reads=reads, maxsize=queue_maxsize)

    common = dict(db=db, ledger=ledger, calculator=calculator, reads=reads, clock=clock)
    orders = OrderService(cache=cache, events=dispatcher, units_per_asset=rates.units_per_asset, **common)
    matcher = LimitOrderMatcher(cache=cache, events=dispatcher, **common)
    executor = PlanExecutor(
        claim_lock_sec=scheduler.claim_lock_sec, units_per_asset=rates.units_per_asset, **common,
    )
    plan_scheduler = PlanScheduler(
        db=db,
        executor=executor,
        cache=cache,
        events=dispatcher,
        clock=clock,
        max_wait_sec=scheduler.max_wait_sec,
        retry_backoff_sec=scheduler.retry_backoff_sec,
        completed_retention_days=scheduler.completed_retention_days,
    )
    plans = PlanService(
        db=db,
        ledger=ledger,
        cache=cache,
        reads=reads,
        events=dispatcher,
        clock=clock,
        wake_scheduler=plan_scheduler.wake,
    )

    logger.info(
        "[APP] core wired (db=%s cache=%s buy=%s sell=%s)",
        db.name, "redis" if cache.enabled else "off",
        calculator.settings.buy_multiplier, calculator.settings.sell_multiplier,
    )
    return LedgerApp(
        db=db,
        cache=cache,
        calculator=calculator,
        settings=settings,
        ledger=ledger,
        reads=reads,
        dispatcher=dispatcher,
        orders=orders,
        plans=plans,
        matcher=matcher,
        executor=executor,
        scheduler=plan_scheduler,
    )
