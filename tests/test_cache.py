"""Tests for the redis cache mirror: read-through, invalidation and degradation."""

import json
import threading

import pytest

from tradeledger.app import build_app
from tradeledger.cache.mirror import (
    PENDING_LIMIT_GEN_KEY,
    PENDING_LIMIT_KEY,
    CacheMirror,
    CacheTTLs,
    balance_key,
    generation_key,
    orders_key,
    plans_key,
)
from tradeledger.cache.redis_client import create_redis
from tradeledger.config import SchedulerConfig
from tradeledger.core.models.enums import Currency, Side
from tradeledger.market_state.price_poller import PricePoller


class TestReadThrough:
    def test_miss_then_hit(self, redis_client):
        mirror = CacheMirror(redis_client)
        calls = []

        def load():
            calls.append(1)
            return {"v": 1}

        assert mirror.read_through("k", load, ttl_sec=60) == {"v": 1}
        assert mirror.read_through("k", load, ttl_sec=60) == {"v": 1}
        assert len(calls) == 1
        assert (mirror.stats["misses"], mirror.stats["hits"]) == (1, 1)
        assert 0 < redis_client.ttl("k") <= 60

    def test_authoritative_bypasses_cached_value(self, redis_client):
        mirror = CacheMirror(redis_client)
        redis_client.set("k", json.dumps("stale"))

        assert mirror.read_through("k", lambda: "fresh", ttl_sec=None, authoritative=True) == "fresh"
        assert json.loads(redis_client.get("k")) == "fresh"

    def test_mirror_wide_authoritative(self, redis_client):
        mirror = CacheMirror(redis_client, authoritative=True)
        redis_client.set("k", json.dumps("stale"))
        assert mirror.read_through("k", lambda: "fresh", ttl_sec=None) == "fresh"
        assert mirror.read_through("k", lambda: "fresher", ttl_sec=None, authoritative=False) == "fresh"

    def test_undecodable_value_is_dropped(self, redis_client):
        mirror = CacheMirror(redis_client)
        redis_client.set("k", "{not json")
        assert mirror.get_json("k") is None
        assert redis_client.get("k") is None

    def test_disabled_mirror_always_loads(self):
        mirror = CacheMirror(None)
        assert not mirror.enabled
        assert mirror.read_through("k", lambda: 5, ttl_sec=1) == 5
        mirror.invalidate_pending_limit()
        assert mirror.pending_limit(lambda: [1], encode=str, decode=int) == [1]

    def test_chart_ttl_lookup(self):
        ttls = CacheTTLs()
        assert ttls.chart("1d") == 3600
        assert ttls.chart("365d") == 24 * 3600
        assert ttls.chart("5y") == 3600


class TestUserEntries:
    def test_balance_refreshed_after_write(self, app, fund, redis_client):
        fund(1, b=100)
        assert app.orders.get_balance(1).available_b == 100
        assert redis_client.get(balance_key(1)) is not None

        app.orders.deposit(1, Currency.B, 50)

        assert redis_client.get(balance_key(1)) is None
        assert app.orders.get_balance(1).available_b == 150

    def test_cache_never_overrides_store_on_authoritative_read(self, app, fund, redis_client):
        fund(1, b=100)
        redis_client.set(
            balance_key(1),
            json.dumps({"user_id": 1, "available_a": 0, "reserved_a": 0, "available_b": 999, "reserved_b": 0}),
        )
        assert app.reads.balance(1).available_b == 999
        assert app.reads.balance(1, authoritative=True).available_b == 100

    def test_snapshot_loaded_before_a_commit_is_not_cached(self, app, fund, redis_client, monkeypatch):
        fund(1, b=1_000)
        load = app.ledger.get
        raced = []

        def load_then_deposit(user_id, **kwargs):
            snapshot = load(user_id, **kwargs)
            if not raced:
                raced.append(1)
                app.orders.deposit(1, Currency.B, 500)
            return snapshot

        monkeypatch.setattr(app.ledger, "get", load_then_deposit)
        assert app.reads.balance(1).available_b == 1_000
        monkeypatch.undo()

        assert redis_client.get(balance_key(1)) is None
        assert app.reads.balance(1).available_b == 1_500
        assert app.reads.balance(1).available_b == 1_500
        assert app.cache.stats["skipped_writes"] == 1

    def test_invalidation_bumps_user_generations(self, app, fund, redis_client):
        fund(1)
        app.cache.invalidate_user(1, orders=True, plans=True)
        assert redis_client.get(generation_key(balance_key(1))) == "1"
        assert redis_client.get(generation_key(orders_key(1))) == "1"
        assert redis_client.get(generation_key(plans_key(1))) == "1"


class TestStats:
    def test_counters_survive_concurrent_readers(self, redis_client):
        mirror = CacheMirror(redis_client)
        mirror.set_json("k", 1, ttl_sec=None)

        def read():
            for _ in range(200):
                mirror.read_through("k", lambda: 1, ttl_sec=None)

        threads = [threading.Thread(target=read) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert mirror.stats["hits"] == 800


class TestPendingWorkingSet:
    """Generation-guarded repopulation of the pending limit order set."""

    def test_invalidation_bumps_generation(self, redis_client):
        mirror = CacheMirror(redis_client)
        mirror.invalidate_pending_limit()
        mirror.invalidate_pending_limit()
        assert redis_client.get(PENDING_LIMIT_GEN_KEY) == "2"

    def test_stale_repopulation_is_not_written(self, redis_client):
        mirror = CacheMirror(redis_client)
        generation = mirror.generation(PENDING_LIMIT_KEY)

        mirror.invalidate_pending_limit()  # a placement lands while the loader runs

        assert mirror.store_if_generation(PENDING_LIMIT_KEY, generation, [{"order_id": 1}], ttl_sec=60) is False
        assert redis_client.get(PENDING_LIMIT_KEY) is None
        assert mirror.stats["skipped_writes"] == 1

    def test_current_generation_is_written(self, redis_client):
        mirror = CacheMirror(redis_client)
        generation = mirror.generation(PENDING_LIMIT_KEY)
        assert mirror.store_if_generation(PENDING_LIMIT_KEY, generation, [{"order_id": 1}], ttl_sec=60) is True
        assert json.loads(redis_client.get(PENDING_LIMIT_KEY)) == [{"order_id": 1}]

    def test_working_set_expires(self, redis_client):
        mirror = CacheMirror(redis_client, ttls=CacheTTLs(pending_sec=30))
        mirror.pending_limit(lambda: [1], encode=lambda i: {"i": i}, decode=lambda d: d["i"])
        assert 0 < redis_client.ttl(PENDING_LIMIT_KEY) <= 30

    def test_failed_invalidation_forces_store_read(self, redis_client, broken_redis):
        mirror = CacheMirror(redis_client)
        mirror.pending_limit(lambda: ["old"], encode=lambda s: {"s": s}, decode=lambda d: d["s"])

        mirror.client = broken_redis
        mirror.invalidate_pending_limit()
        assert mirror._pending_dirty

        mirror.client = redis_client
        items = mirror.pending_limit(lambda: ["new"], encode=lambda s: {"s": s}, decode=lambda d: d["s"])
        assert items == ["new"]
        assert not mirror._pending_dirty

    def test_limit_placement_visible_to_matcher(self, app, fund):
        fund(1, b=1_000)
        assert app.reads.pending_limit_orders() == []
        order = app.orders.place_limit_order(1, Side.BUY, amount=1_000, fixed=Currency.B, limit_price=100)
        assert [o.order_id for o in app.reads.pending_limit_orders()] == [order.order_id]


class TestDegradation:
    """Redis down: every operation still runs on the durable store."""

    @pytest.fixture
    def degraded(self, db, broken_redis, transport, rates, clock):
        return build_app(
            db=db,
            redis_client=broken_redis,
            transport=transport,
            rates=rates,
            scheduler=SchedulerConfig(),
            clock=clock,
        )

    def test_core_operations_work(self, degraded, clock, price_source):
        app = degraded
        app.ledger.open_account(1)
        app.orders.deposit(1, Currency.B, 300_000)

        PricePoller(
            source=price_source, db=app.db, cache=app.cache, reads=app.reads, matcher=app.matcher, clock=clock,
        ).on_price(100_000)

        app.orders.place_market_order(1, Side.BUY, amount=11_000, fixed=Currency.B)
        limit = app.orders.place_limit_order(1, Side.BUY, amount=100_000_000, fixed=Currency.A, limit_price=120_000)
        report = app.matcher.on_tick(100_000)

        assert [o.order_id for o in report.executed] == [limit.order_id]
        assert app.reads.balance(1).available_b == 300_000 - 11_000 - 120_000
        assert app.cache.stats["errors"] > 0

    def test_missing_url_disables_cache(self):
        assert create_redis(None) is None
        assert create_redis("") is None
