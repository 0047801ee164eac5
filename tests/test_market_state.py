"""Tests for the reference price source, the pollers and history retention."""

from typing import Any, List

import pytest
import requests

from tradeledger.core.errors import PriceFetchError, ValidationError
from tradeledger.core.models.enums import Currency, Side
from tradeledger.data.market_repository import MarketRepository
from tradeledger.data.retention.retention_worker import RetentionPolicy, RetentionWorker
from tradeledger.market_state.chart_poller import ChartPoller
from tradeledger.market_state.price_source import CoinGeckoPriceSource, build_series, to_price_units


class FakeResponse:
    def __init__(self, status_code: int, body: Any = None, text: str = ""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self) -> Any:
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    """Serves queued responses to requests.Session.get."""

    def __init__(self, *responses: Any):
        self.responses: List[Any] = list(responses)
        self.calls: List[dict] = []

    def get(self, url: str, params: Any = None, timeout: float = None) -> FakeResponse:
        self.calls.append({"url": url, "params": params})
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


def _source(*responses: Any, **kwargs: Any) -> CoinGeckoPriceSource:
    src = CoinGeckoPriceSource(backoff_base=0, clock=lambda: 1_700_000_000.0, **kwargs)
    src.sess = FakeSession(*responses)
    return src


class TestPriceUnits:
    def test_scale_and_rounding(self):
        assert to_price_units(64123.456, 100) == 6_412_346
        assert to_price_units("10.5", 1) == 11

    @pytest.mark.parametrize("bad", ["abc", 0, -1, None])
    def test_rejects(self, bad):
        with pytest.raises(PriceFetchError):
            to_price_units(bad, 1)


class TestCoinGecko:
    def test_reference_price(self):
        src = _source(FakeResponse(200, {"bitcoin": {"usd": 64000.5}}), scale=100)
        assert src.fetch_reference_price() == 6_400_050
        assert src.sess.calls[0]["url"].endswith("/simple/price")
        assert src.sess.calls[0]["params"] == {"ids": "bitcoin", "vs_currencies": "usd"}

    def test_retries_transient_errors(self):
        src = _source(
            FakeResponse(503),
            requests.ConnectionError("reset"),
            FakeResponse(200, {"bitcoin": {"usd": 1}}),
        )
        assert src.fetch_reference_price() == 1
        assert len(src.sess.calls) == 3

    def test_gives_up_after_max_retries(self):
        src = _source(FakeResponse(429), FakeResponse(429), max_retries=2)
        with pytest.raises(PriceFetchError):
            src.fetch_reference_price()

    def test_client_error_is_not_retried(self):
        src = _source(FakeResponse(404, text="not found"))
        with pytest.raises(PriceFetchError):
            src.fetch_reference_price()
        assert len(src.sess.calls) == 1

    def test_malformed_body(self):
        with pytest.raises(PriceFetchError):
            _source(FakeResponse(200, {"ethereum": {"usd": 1}})).fetch_reference_price()
        with pytest.raises(PriceFetchError):
            _source(FakeResponse(200, ValueError("bad json"))).fetch_reference_price()

    def test_chart(self):
        body = {"prices": [[1_000, 100.0], [2_000, 110.0]]}
        series = _source(FakeResponse(200, body)).fetch_chart("7d")

        assert series["points"] == [[1_000, 100], [2_000, 110]]
        assert series["change_pct"] == 10.0
        assert (series["from_ms"], series["to_ms"], series["fetched_ms"]) == (1_000, 2_000, 1_700_000_000_000)

    def test_unknown_timeframe(self):
        with pytest.raises(ValidationError):
            _source().fetch_chart("2h")

    def test_empty_series(self):
        s = build_series("1d", [], fetched_ms=5)
        assert (s["change_pct"], s["from_ms"], s["to_ms"]) == (None, None, None)


class TestPricePoller:
    def test_tick_stored_cached_and_matched(self, app, poller, price_source, fund):
        fund(1, a=100_000_000)
        app.orders.place_limit_order(1, Side.SELL, amount=100_000_000, fixed=Currency.A, limit_price=85_000)

        report = poller.poll_once()

        assert len(report.executed) == 1
        latest = app.reads.latest_price()
        assert (latest["reference_price"], latest["buy"], latest["sell"]) == (100_000, 110_000, 90_000)

    def test_failed_fetch_skips_tick(self, app, poller, price_source):
        price_source.price = 90_000
        poller.poll_once()
        price_source.price = PriceFetchError("timeout")

        assert poller.poll_once() is None
        assert app.reads.latest_price(authoritative=True)["reference_price"] == 90_000

    def test_latest_price_from_store_when_cache_empty(self, app, set_price, clock, redis_client):
        set_price(100_000)
        clock.advance(sec=30)
        set_price(101_000)
        redis_client.flushall()

        latest = app.reads.latest_price()
        assert latest["reference_price"] == 101_000
        assert latest["observed_ms"] == clock()


class TestChartPoller:
    def test_refresh_keeps_latest_series(self, app, price_source):
        charts = ChartPoller(source=price_source, db=app.db, cache=app.cache, keep=2)
        for _ in range(3):
            last = charts.refresh("1d")

        with app.db.transaction() as tx:
            n = tx.fetch_one("SELECT COUNT(*) AS n FROM chart_series WHERE timeframe = %s", ("1d",))["n"]
        assert n == 2
        assert app.reads.chart("1d")["fetched_ms"] == last["fetched_ms"]
        assert app.reads.chart("1d", authoritative=True)["points_count"] == 2

    def test_missing_chart(self, app):
        assert app.reads.chart("90d") is None


class TestRetention:
    @pytest.fixture
    def worker(self, app, clock):
        return RetentionWorker(
            db=app.db,
            policy=RetentionPolicy(price_ticks_keep=3, charts_keep=1, completed_plans_days=7),
            clock=clock,
        )

    def _ticks(self, app):
        with app.db.transaction() as tx:
            return tx.fetch_one("SELECT COUNT(*) AS n FROM price_ticks")["n"]

    def test_trims_ticks_and_keeps_newest(self, app, worker, clock):
        market = MarketRepository()
        with app.db.transaction() as tx:
            for i in range(5):
                market.insert_tick(tx, reference_price=100 + i, observed_ms=clock() + i)

        dry = worker.run_once(dry_run=True)
        assert dry["price_ticks"] == 2
        assert self._ticks(app) == 5

        assert worker.run_once()["price_ticks"] == 2
        assert self._ticks(app) == 3
        assert app.reads.latest_price(authoritative=True)["reference_price"] == 104

    def test_purges_old_completed_plans(self, app, worker, fund, set_price, clock):
        fund(1, b=10_000)
        set_price(100_000)
        app.plans.create(1, Side.BUY, "HOURLY", amount_b=1_000, remaining_executions=1)
        clock.advance(hours=1)
        app.scheduler.run_pass()

        assert worker.run_once()["completed_plans"] == 0
        clock.advance(hours=24 * 8)
        assert worker.run_once(dry_run=True)["completed_plans"] == 1
        assert worker.run_once()["completed_plans"] == 1
        assert app.reads.admin_plans() == []
