# src/tradeledger/run_ledger.py
from __future__ import annotations

import logging
import signal
import threading
from typing import Optional

from tradeledger.app import LedgerApp, build_app
from tradeledger.cache.redis_client import create_redis
from tradeledger.config import LedgerConfig, load_config
from tradeledger.core.errors import CacheUnavailable
from tradeledger.data.retention.retention_worker import RetentionWorker
from tradeledger.data.storage.factory import default_ddl, open_database
from tradeledger.market_state.chart_poller import ChartPoller
from tradeledger.market_state.price_poller import PricePoller
from tradeledger.market_state.price_source import CoinGeckoPriceSource
from tradeledger.notifications.telegram import TelegramAdminTransport, TelegramTarget
from tradeledger.notifications.transports import FanoutTransport, LoggingTransport, PushTransport


# -----------------------------------------------------------------------------
# helpers
# -----------------------------------------------------------------------------
def _build_transport(cfg: LedgerConfig, logger: logging.Logger) -> PushTransport:
    transports: list[PushTransport] = [LoggingTransport()]
    n = cfg.notification
    if n.telegram_enabled:
        transports.append(
            TelegramAdminTransport(
                target=TelegramTarget(name="admin", bot_token=n.telegram_bot_token, chat_id=n.telegram_chat_id),
                actions=n.telegram_actions,
            )
        )
        logger.info("Telegram admin alerts enabled: %s", ",".join(n.telegram_actions))
    return FanoutTransport(*transports)


def _connect_cache(cfg: LedgerConfig, logger: logging.Logger):
    try:
        return create_redis(cfg.cache.redis_url)
    except CacheUnavailable as e:
        logger.warning("Cache unavailable at startup, running on durable store only: %s", e)
        return None


def build_workers(app: LedgerApp, cfg: LedgerConfig) -> list[threading.Thread]:
    source = CoinGeckoPriceSource(
        coin_id=cfg.poller.coin_id,
        vs_currency=cfg.poller.vs_currency,
        scale=cfg.poller.price_scale,
    )
    workers: list[threading.Thread] = [
        app.dispatcher,
        app.scheduler,
        PricePoller(
            source=source,
            db=app.db,
            cache=app.cache,
            reads=app.reads,
            matcher=app.matcher,
            events=app.dispatcher,
            poll_sec=cfg.poller.price_poll_sec,
        ),
        RetentionWorker(
            db=app.db,
            policy=cfg.retention.policy,
            run_sec=cfg.retention.run_sec,
        ),
    ]
    if cfg.poller.charts_enabled:
        workers.append(
            ChartPoller(
                source=source,
                db=app.db,
                cache=app.cache,
                keep=cfg.retention.policy.charts_keep,
                tick_sec=cfg.poller.chart_tick_sec,
            )
        )
    return workers


def main(argv: Optional[list[str]] = None) -> None:
    import argparse

    ap = argparse.ArgumentParser(description="Run the ledger workers (price poller, matcher, plan scheduler, notifications)")
    ap.add_argument("--config", default=None, help="path to ledger.yaml (default: $LEDGER_CONFIG or config/ledger.yaml)")
    ap.add_argument("--migrate", action="store_true", help="apply the schema before starting")
    args = ap.parse_args(argv)

    # -------------------------------------------------------------------------
    # CONFIG (.env first) + LOGGING
    # -------------------------------------------------------------------------
    cfg = load_config(args.config)

    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logger = logging.getLogger("tradeledger.run_ledger")
    logger.info("=== TRADELEDGER START ===")

    # -------------------------------------------------------------------------
    # STORAGE + CACHE
    # -------------------------------------------------------------------------
    db = open_database(cfg.storage.dsn, pool_max_size=cfg.storage.pool_max_size)
    if args.migrate:
        db.exec_ddl(default_ddl(db))
        logger.info("Schema applied (%s)", db.name)

    app = build_app(
        db=db,
        redis_client=_connect_cache(cfg, logger),
        transport=_build_transport(cfg, logger),
        rates=cfg.rates,
        scheduler=cfg.scheduler,
        ttls=cfg.cache.ttls,
        queue_maxsize=cfg.notification.queue_maxsize,
    )

    # -------------------------------------------------------------------------
    # RUN
    # -------------------------------------------------------------------------
    workers = build_workers(app, cfg)
    for w in workers:
        w.start()
        logger.info("Worker started: %s", w.name)

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    stop.wait()

    logger.info("Stopping %d worker(s)", len(workers))
    for w in workers:
        w.stop()  # type: ignore[attr-defined]
    for w in workers:
        w.join(timeout=10)
    db.close()
    logger.info("=== TRADELEDGER STOP ===")


if __name__ == "__main__":
    main()
