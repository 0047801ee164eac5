# src/tradeledger/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from tradeledger.cache.mirror import CacheTTLs
from tradeledger.core.rates.calculator import BUY_KEY, SELL_KEY, RateSettings
from tradeledger.core.utils.amounts import UNITS_PER_ASSET
from tradeledger.data.retention.retention_worker import RetentionPolicy

DEFAULT_CONFIG_PATH = Path("config") / "ledger.yaml"


@dataclass(frozen=True)
class StorageConfig:
    dsn: str
    pool_max_size: int = 10


@dataclass(frozen=True)
class CacheConfig:
    redis_url: Optional[str] = None
    ttls: CacheTTLs = field(default_factory=CacheTTLs)


@dataclass(frozen=True)
class RatesConfig:
    defaults: RateSettings
    units_per_asset: int = UNITS_PER_ASSET


@dataclass(frozen=True)
class SchedulerConfig:
    max_wait_sec: float = 3600.0
    claim_lock_sec: float = 60.0
    retry_backoff_sec: float = 5.0
    completed_retention_days: float = 7.0


@dataclass(frozen=True)
class PollerConfig:
    price_poll_sec: float = 30.0
    coin_id: str = "bitcoin"
    vs_currency: str = "usd"
    price_scale: int = 1
    charts_enabled: bool = True
    chart_tick_sec: float = 30.0


@dataclass(frozen=True)
class RetentionConfig:
    run_sec: float = 3600.0
    policy: RetentionPolicy = field(default_factory=RetentionPolicy)


@dataclass(frozen=True)
class NotificationConfig:
    queue_maxsize: int = 10_000
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_actions: tuple[str, ...] = ("limit_executed", "plan_completed", "deposit", "withdraw")

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


@dataclass(frozen=True)
class LedgerConfig:
    storage: StorageConfig
    cache: CacheConfig
    rates: RatesConfig
    scheduler: SchedulerConfig
    poller: PollerConfig
    retention: RetentionConfig
    notification: NotificationConfig
    log_level: str = "INFO"


# -----------------------------------------------------------------------------
# helpers
# -----------------------------------------------------------------------------
def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise SystemExit(f"Config file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return data or {}


def _env(name: str) -> str:
    v = os.getenv(name)
    return v.strip() if isinstance(v, str) else ""


def _section(cfg: dict[str, Any], name: str) -> dict[str, Any]:
    sec = cfg.get(name) or {}
    if not isinstance(sec, dict):
        raise SystemExit(f"config section '{name}' must be a mapping")
    return sec


def build_config(raw: dict[str, Any], *, env_file: Optional[str] = None) -> LedgerConfig:
    """Static YAML + environment (DSNs, secrets) -> LedgerConfig."""
    load_dotenv(env_file)

    dsn = _env("LEDGER_DB_DSN")
    if not dsn:
        raise SystemExit("LEDGER_DB_DSN env var is required")

    st = _section(raw, "storage")
    ca = _section(raw, "cache")
    ra = _section(raw, "rates")
    sc = _section(raw, "scheduler")
    po = _section(raw, "poller")
    re_ = _section(raw, "retention")
    no = _section(raw, "notification")

    ttl = ca.get("ttl") or {}
    defaults_ttl = CacheTTLs()
    ttls = CacheTTLs(
        price_sec=int(ttl.get("price_sec", defaults_ttl.price_sec)),
        balance_sec=int(ttl.get("balance_sec", defaults_ttl.balance_sec)),
        orders_sec=int(ttl.get("orders_sec", defaults_ttl.orders_sec)),
        plans_sec=int(ttl.get("plans_sec", defaults_ttl.plans_sec)),
        pending_sec=int(ttl.get("pending_sec", defaults_ttl.pending_sec)),
        chart_sec={**defaults_ttl.chart_sec, **{str(k): int(v) for k, v in (ca.get("chart_ttl_sec") or {}).items()}},
    )

    rate_defaults = RateSettings.parse(
        {
            BUY_KEY: str(ra.get("buy_multiplier", "1.0")),
            SELL_KEY: str(ra.get("sell_multiplier", "1.0")),
        }
    )

    return LedgerConfig(
        storage=StorageConfig(dsn=dsn, pool_max_size=int(st.get("pool_max_size", 10))),
        cache=CacheConfig(redis_url=_env("REDIS_URL") or None, ttls=ttls),
        rates=RatesConfig(
            defaults=rate_defaults,
            units_per_asset=int(ra.get("units_per_asset", UNITS_PER_ASSET)),
        ),
        scheduler=SchedulerConfig(
            max_wait_sec=float(sc.get("max_wait_sec", 3600)),
            claim_lock_sec=float(sc.get("claim_lock_sec", 60)),
            retry_backoff_sec=float(sc.get("retry_backoff_sec", 5)),
            completed_retention_days=float(sc.get("completed_retention_days", 7)),
        ),
        poller=PollerConfig(
            price_poll_sec=float(po.get("price_poll_sec", 30)),
            coin_id=str(po.get("coin_id", "bitcoin")),
            vs_currency=str(po.get("vs_currency", "usd")),
            price_scale=int(po.get("price_scale", 1)),
            charts_enabled=bool(po.get("charts_enabled", True)),
            chart_tick_sec=float(po.get("chart_tick_sec", 30)),
        ),
        retention=RetentionConfig(
            run_sec=float(re_.get("run_sec", 3600)),
            policy=RetentionPolicy(
                price_ticks_keep=int(re_.get("price_ticks_keep", 10_000)),
                charts_keep=int(re_.get("charts_keep", 2)),
                completed_plans_days=float(sc.get("completed_retention_days", 7)),
            ),
        ),
        notification=NotificationConfig(
            queue_maxsize=int(no.get("queue_maxsize", 10_000)),
            telegram_bot_token=_env("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=_env("TELEGRAM_CHAT_ID"),
            telegram_actions=tuple(no.get("telegram_actions") or NotificationConfig.telegram_actions),
        ),
        log_level=(_env("LEDGER_LOG_LEVEL") or str(raw.get("log_level", "INFO"))).upper(),
    )


def load_config(path: Optional[Path] = None, *, env_file: Optional[str] = None) -> LedgerConfig:
    cfg_path = Path(path or _env("LEDGER_CONFIG") or DEFAULT_CONFIG_PATH)
    return build_config(_load_yaml(cfg_path), env_file=env_file)
