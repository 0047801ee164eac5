# src/tradeledger/cache/mirror.py
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

import redis

T = TypeVar("T")

logger = logging.getLogger(__name__)

PRICE_KEY = "price:latest"
PENDING_LIMIT_KEY = "orders:pending_limit"


def generation_key(key: str) -> str:
    return f"{key}:gen"


PENDING_LIMIT_GEN_KEY = generation_key(PENDING_LIMIT_KEY)


def chart_key(timeframe: str) -> str:
    return f"chart:{timeframe}"


def balance_key(user_id: int) -> str:
    return f"user:{int(user_id)}:balance"


def orders_key(user_id: int) -> str:
    return f"user:{int(user_id)}:orders"


def plans_key(user_id: int) -> str:
    return f"user:{int(user_id)}:plans"


def _identity(value: Any) -> Any:
    return value


@dataclass(frozen=True)
class CacheTTLs:
    price_sec: int = 300
    balance_sec: int = 600
    orders_sec: int = 3600
    plans_sec: int = 1800
    pending_sec: int = 120
    chart_sec: dict[str, int] = field(
        default_factory=lambda: {
            "1d": 3600,
            "7d": 6 * 3600,
            "30d": 12 * 3600,
            "90d": 18 * 3600,
            "365d": 24 * 3600,
        }
    )

    def chart(self, timeframe: str) -> int:
        return int(self.chart_sec.get(timeframe, 3600))


class CacheMirror:
    """
    Read-through, write-invalidate mirror of durable state in redis.

    Never authoritative:
      • every read can fall back to the loader (durable store)
      • any RedisError is logged and treated as a miss / no-op
      • writes to the cache happen only after the durable commit

    Invalidated keys (per-user entries, the pending working set) carry a
    generation counter next to them. Invalidation bumps it; a refill is only
    stored while the counter still holds the value read before loading, so a
    snapshot taken before a commit is never written back after it.

    authoritative=True (per call, or for the whole mirror) skips the cached
    value and reads through to the store. Tests use it to force miss paths.
    """

    def __init__(
        self,
        client: Optional[redis.Redis],
        *,
        ttls: CacheTTLs | None = None,
        authoritative: bool = False,
    ):
        self.client = client
        self.ttls = ttls or CacheTTLs()
        self.authoritative = bool(authoritative)
        # shared by poller, scheduler, dispatcher and request threads
        self.stats = {"hits": 0, "misses": 0, "errors": 0, "skipped_writes": 0}
        self._stats_lock = threading.Lock()
        # set when an invalidation could not reach redis; reads bypass the working set until one succeeds.
        # Process-local: another instance keeps serving its copy until pending_sec expires it.
        self._pending_dirty = False

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self.stats[name] += 1

    def _failed(self, op: str, key: str, e: Exception) -> None:
        self._count("errors")
        logger.warning("[CACHE] %s %s failed, using durable store: %s", op, key, e)

    # ------------------------------------------------------------------
    # raw json access
    # ------------------------------------------------------------------
    def get_json(self, key: str) -> Optional[Any]:
        if self.client is None:
            return None
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            self._failed("GET", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("[CACHE] dropping undecodable value at %s", key)
            self.delete(key)
            return None

    def set_json(self, key: str, value: Any, *, ttl_sec: Optional[int]) -> bool:
        if self.client is None:
            return False
        try:
            payload = json.dumps(value, separators=(",", ":"))
            if ttl_sec:
                self.client.set(key, payload, ex=int(ttl_sec))
            else:
                self.client.set(key, payload)
            return True
        except redis.RedisError as e:
            self._failed("SET", key, e)
            return False

    def delete(self, *keys: str) -> None:
        if self.client is None or not keys:
            return
        try:
            self.client.delete(*keys)
        except redis.RedisError as e:
            self._failed("DEL", ",".join(keys), e)

    # ------------------------------------------------------------------
    # generation guard
    # ------------------------------------------------------------------
    def generation(self, key: str) -> Optional[int]:
        """Current generation of `key`, None when redis is unusable."""
        if self.client is None:
            return None
        gen_key = generation_key(key)
        try:
            return int(self.client.get(gen_key) or 0)
        except redis.RedisError as e:
            self._failed("GET", gen_key, e)
            return None

    def store_if_generation(self, key: str, generation: int, value: Any, *, ttl_sec: Optional[int]) -> bool:
        """SET `key` only if no invalidation happened since `generation` was read."""
        if self.client is None:
            return False
        gen_key = generation_key(key)
        try:
            with self.client.pipeline() as pipe:
                pipe.watch(gen_key)
                current = int(pipe.get(gen_key) or 0)
                if current != generation:
                    pipe.unwatch()
                    self._count("skipped_writes")
                    logger.debug("[CACHE] %s moved %s -> %s, not storing", key, generation, current)
                    return False
                pipe.multi()
                payload = json.dumps(value, separators=(",", ":"))
                if ttl_sec:
                    pipe.set(key, payload, ex=int(ttl_sec))
                else:
                    pipe.set(key, payload)
                pipe.execute()
                return True
        except redis.WatchError:
            self._count("skipped_writes")
            return False
        except redis.RedisError as e:
            self._failed("WATCH/SET", key, e)
            return False

    def invalidate(self, *keys: str) -> bool:
        """Bump each key's generation and delete it in one MULTI. False when redis is unreachable."""
        if self.client is None or not keys:
            return True
        try:
            pipe = self.client.pipeline(transaction=True)
            for key in keys:
                pipe.incr(generation_key(key))
            pipe.delete(*keys)
            pipe.execute()
            return True
        except redis.RedisError as e:
            self._failed("INVALIDATE", ",".join(keys), e)
            return False

    def read_through(
        self,
        key: str,
        loader: Callable[[], T],
        *,
        ttl_sec: Optional[int],
        encode: Callable[[T], Any] = _identity,
        decode: Callable[[Any], T] = _identity,
        authoritative: Optional[bool] = None,
    ) -> T:
        bypass = self.authoritative if authoritative is None else authoritative
        if not bypass:
            cached = self.get_json(key)
            if cached is not None:
                self._count("hits")
                return decode(cached)

        self._count("misses")
        generation = self.generation(key)
        value = loader()
        if generation is not None:
            self.store_if_generation(key, generation, encode(value), ttl_sec=ttl_sec)
        return value

    # ------------------------------------------------------------------
    # price / charts
    # ------------------------------------------------------------------
    def set_price(self, payload: dict[str, Any]) -> None:
        self.set_json(PRICE_KEY, payload, ttl_sec=self.ttls.price_sec)

    def latest_price(self, loader: Callable[[], Optional[dict]], *, authoritative: Optional[bool] = None) -> Optional[dict]:
        bypass = self.authoritative if authoritative is None else authoritative
        if not bypass:
            cached = self.get_json(PRICE_KEY)
            if cached is not None:
                self._count("hits")
                return cached
        self._count("misses")
        value = loader()
        if value is not None:
            self.set_price(value)
        return value

    def set_chart(self, timeframe: str, series: dict[str, Any]) -> None:
        self.set_json(chart_key(timeframe), series, ttl_sec=self.ttls.chart(timeframe))

    def chart(self, timeframe: str, loader: Callable[[], Optional[dict]], *, authoritative: Optional[bool] = None) -> Optional[dict]:
        bypass = self.authoritative if authoritative is None else authoritative
        if not bypass:
            cached = self.get_json(chart_key(timeframe))
            if cached is not None:
                self._count("hits")
                return cached
        self._count("misses")
        value = loader()
        if value is not None:
            self.set_chart(timeframe, value)
        return value

    # ------------------------------------------------------------------
    # per-user entries
    # ------------------------------------------------------------------
    def invalidate_user(self, user_id: int, *, balance: bool = True, orders: bool = False, plans: bool = False) -> None:
        keys = []
        if balance:
            keys.append(balance_key(user_id))
        if orders:
            keys.append(orders_key(user_id))
        if plans:
            keys.append(plans_key(user_id))
        self.invalidate(*keys)

    # ------------------------------------------------------------------
    # pending limit working set
    # ------------------------------------------------------------------
    def pending_limit(
        self,
        loader: Callable[[], list[T]],
        *,
        encode: Callable[[T], dict],
        decode: Callable[[dict], T],
        authoritative: Optional[bool] = None,
    ) -> list[T]:
        bypass = self.authoritative if authoritative is None else authoritative
        if self._pending_dirty:
            self.invalidate_pending_limit()
            bypass = bypass or self._pending_dirty
        if not bypass:
            cached = self.get_json(PENDING_LIMIT_KEY)
            if cached is not None:
                self._count("hits")
                return [decode(item) for item in cached]

        self._count("misses")
        generation = self.generation(PENDING_LIMIT_KEY)
        items = loader()
        if generation is not None:
            self.store_if_generation(
                PENDING_LIMIT_KEY, generation, [encode(i) for i in items], ttl_sec=self.ttls.pending_sec,
            )
        return items

    def invalidate_pending_limit(self) -> None:
        """Bump the generation first so an in-flight repopulation cannot write stale data back."""
        if self.client is None:
            return
        self._pending_dirty = not self.invalidate(PENDING_LIMIT_KEY)
