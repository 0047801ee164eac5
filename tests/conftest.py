"""Pytest configuration and shared fixtures."""

from decimal import Decimal
from typing import Any, Callable, Dict, List, Tuple

import fakeredis
import pytest
import redis

from tradeledger.app import LedgerApp, build_app
from tradeledger.config import RatesConfig, SchedulerConfig
from tradeledger.core.models.enums import Currency
from tradeledger.core.rates.calculator import RateSettings
from tradeledger.core.utils.amounts import UNITS_PER_ASSET
from tradeledger.data.storage.factory import default_ddl
from tradeledger.data.storage.sqlite.storage import SQLiteDatabase
from tradeledger.market_state.price_poller import PricePoller
from tradeledger.market_state.price_source import PriceSource, build_series
from tradeledger.notifications.transports import PushTransport

START_MS = 1_700_000_000_000  # 2023-11-14T22:13:20Z


class ManualClock:
    """Epoch-ms clock that only moves when a test says so."""

    def __init__(self, start_ms: int = START_MS):
        self.now = int(start_ms)

    def __call__(self) -> int:
        return self.now

    def advance(self, *, ms: int = 0, sec: float = 0.0, hours: float = 0.0) -> int:
        self.now += int(ms + sec * 1000 + hours * 3_600_000)
        return self.now


class RecordingTransport(PushTransport):
    """Keeps every push in memory."""

    def __init__(self) -> None:
        self.user: List[Tuple[int, str, Dict[str, Any]]] = []
        self.admin: List[Tuple[str, Dict[str, Any]]] = []
        self.broadcasts: List[Tuple[str, Dict[str, Any]]] = []

    def push_to_user(self, user_id: int, event_type: str, payload: Dict[str, Any]) -> None:
        self.user.append((user_id, event_type, payload))

    def push_to_admins(self, event_type: str, payload: Dict[str, Any]) -> None:
        self.admin.append((event_type, payload))

    def broadcast(self, event_type: str, payload: Dict[str, Any]) -> None:
        self.broadcasts.append((event_type, payload))

    def activity(self) -> List[str]:
        return [p["action"] for t, p in self.admin if t == "activity"]


class StaticPriceSource(PriceSource):
    """Returns whatever price the test set; raises when given an exception instead."""

    def __init__(self, price: Any = 100_000):
        self.price = price
        self.calls = 0

    def fetch_reference_price(self) -> int:
        self.calls += 1
        if isinstance(self.price, Exception):
            raise self.price
        return int(self.price)

    def fetch_chart(self, timeframe: str) -> Dict[str, Any]:
        self.calls += 1
        points = [[START_MS, 100_000], [START_MS + 60_000, 101_000]]
        return build_series(timeframe, points, fetched_ms=START_MS + self.calls)


class BrokenRedis:
    """Every call fails like an unreachable server."""

    def _down(self, *args: Any, **kwargs: Any) -> Any:
        raise redis.ConnectionError("connection refused")

    get = set = delete = incr = ping = pipeline = _down


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock starting at START_MS."""
    return ManualClock()


@pytest.fixture
def db(tmp_path) -> SQLiteDatabase:
    """Migrated SQLite store in a temp directory."""
    database = SQLiteDatabase(str(tmp_path / "ledger.db"))
    database.exec_ddl(default_ddl(database))
    return database


@pytest.fixture
def redis_client() -> fakeredis.FakeRedis:
    """In-process redis."""
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def broken_redis() -> BrokenRedis:
    """Client for a redis that is down."""
    return BrokenRedis()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def rates() -> RatesConfig:
    """buy x1.10, sell x0.90, one A = 10^8 units."""
    return RatesConfig(
        defaults=RateSettings(buy_multiplier=Decimal("1.10"), sell_multiplier=Decimal("0.90")),
        units_per_asset=UNITS_PER_ASSET,
    )


@pytest.fixture
def app(db, redis_client, transport, rates, clock) -> LedgerApp:
    """Fully wired core on SQLite + fakeredis. No worker thread is started."""
    return build_app(
        db=db,
        redis_client=redis_client,
        transport=transport,
        rates=rates,
        scheduler=SchedulerConfig(max_wait_sec=3600, claim_lock_sec=60, retry_backoff_sec=5),
        clock=clock,
    )


@pytest.fixture
def price_source() -> StaticPriceSource:
    return StaticPriceSource()


@pytest.fixture
def poller(app, price_source, clock) -> PricePoller:
    """Price poller wired like production, driven by hand."""
    return PricePoller(
        source=price_source,
        db=app.db,
        cache=app.cache,
        reads=app.reads,
        matcher=app.matcher,
        events=app.dispatcher,
        clock=clock,
    )


@pytest.fixture
def set_price(poller) -> Callable[[int], Any]:
    """Observe a reference price: store, cache, broadcast, match."""
    return poller.on_price


@pytest.fixture
def fund(app) -> Callable[..., None]:
    """Open an account and credit it straight through the ledger (no order rows, no events)."""

    def _fund(user_id: int, *, a: int = 0, b: int = 0) -> None:
        app.ledger.open_account(user_id)
        if a:
            app.ledger.deposit(user_id, Currency.A, a)
        if b:
            app.ledger.deposit(user_id, Currency.B, b)

    return _fund
