import asyncio
import json
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from trending.config import settings
from trending.errors import RecordNotFoundError, StoreUnavailableError
from trending.models import OnChainMetrics, TokenScoreRecord
from trending.utils.logging_config import logger

MGET_CHUNK = 500


class _AddressLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class ScoreStore:
    """
    Redis-backed Score Store: one JSON document per token address.

    Writes to one address are serialised through a per-address lock and land as a
    single SET of the whole document, so readers never see a final score that is
    stale relative to its sub-scores.
    """

    def __init__(self, client: Optional[redis.Redis] = None, prefix: Optional[str] = None):
        self._redis: Optional[redis.Redis] = client
        self.prefix = prefix if prefix is not None else settings.SCORE_KEY_PREFIX
        self._locks: Dict[str, _AddressLock] = {}
        self._write_listeners: List[Callable[[str], None]] = []

    async def connect(self):
        """Initializes the Redis connection pool."""
        try:
            self._redis = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=1,  # Fast fail to switch to fake
                socket_timeout=settings.STORE_TIMEOUT_SECONDS,
            )
            await self._redis.ping()
            logger.info("Connected to Redis score store", url=settings.REDIS_URL)
        except (RedisError, OSError):
            # Expected for local runs without a Redis server
            logger.info("No external Redis server found. Using in-memory score store (stand-alone mode).")
            from fakeredis import aioredis
            self._redis = aioredis.FakeRedis(decode_responses=True)

    async def close(self):
        if self._redis:
            await self._redis.aclose()

    def add_write_listener(self, listener: Callable[[str], None]):
        """listener(address) runs after every successful write."""
        self._write_listeners.append(listener)

    def key(self, address: str) -> str:
        return f"{self.prefix}{address}"

    @asynccontextmanager
    async def _address_lock(self, address: str):
        """Per-address write lock, dropped once nobody holds or waits for it."""
        entry = self._locks.get(address)
        if entry is None:
            entry = self._locks[address] = _AddressLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[address]

    @contextmanager
    def _guard(self, operation: str):
        if self._redis is None:
            raise StoreUnavailableError(f"{operation}: store not connected")
        try:
            yield
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise StoreUnavailableError(f"{operation}: {e}") from e

    def _decode(self, raw: Optional[str]) -> Optional[TokenScoreRecord]:
        if not raw:
            return None
        try:
            return TokenScoreRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Skipping malformed score record", error=str(e))
            return None

    # --- Reads ---

    async def get(self, address: str) -> Optional[TokenScoreRecord]:
        with self._guard("get"):
            raw = await self._redis.get(self.key(address))
        return self._decode(raw)

    async def get_many(self, addresses: Iterable[str]) -> List[TokenScoreRecord]:
        """Records for the given addresses in the same order; missing ones are skipped."""
        addresses = list(addresses)
        if not addresses:
            return []
        values = []
        with self._guard("get_many"):
            for i in range(0, len(addresses), MGET_CHUNK):
                chunk = addresses[i:i + MGET_CHUNK]
                values.extend(await self._redis.mget([self.key(a) for a in chunk]))
        return [r for r in (self._decode(v) for v in values) if r is not None]

    async def load_all(self) -> List[TokenScoreRecord]:
        """Full scan of every tracked record."""
        with self._guard("load_all"):
            keys = [k async for k in self._redis.scan_iter(match=f"{self.prefix}*", count=MGET_CHUNK)]
            values = []
            for i in range(0, len(keys), MGET_CHUNK):
                values.extend(await self._redis.mget(keys[i:i + MGET_CHUNK]))
        return [r for r in (self._decode(v) for v in values) if r is not None]

    # --- Writes ---

    async def _put(self, record: TokenScoreRecord):
        with self._guard("put"):
            await self._redis.set(self.key(record.address), json.dumps(record.to_dict()))
        for listener in self._write_listeners:
            listener(record.address)

    async def create(self, address: str, name: str, symbol: str,
                     metrics: OnChainMetrics, now: datetime) -> TokenScoreRecord:
        """Bootstraps a record with its on-chain score. Existing records are refreshed instead."""
        async with self._address_lock(address):
            existing = await self.get(address)
            if existing is not None:
                record = existing.with_onchain(metrics, now)
            else:
                record = TokenScoreRecord(
                    address=address,
                    name=name or "",
                    symbol=symbol or "",
                    onchain_score=0.0,
                    last_updated=now,
                ).with_onchain(metrics, now)
            await self._put(record)
        return record

    async def apply_onchain(self, address: str, metrics: OnChainMetrics,
                            now: datetime) -> TokenScoreRecord:
        async with self._address_lock(address):
            existing = await self.get(address)
            if existing is None:
                raise RecordNotFoundError(address)
            record = existing.with_onchain(metrics, now)
            await self._put(record)
        return record

    async def apply_social(self, address: str, social_score: float,
                           analysis: Optional[dict], now: datetime) -> TokenScoreRecord:
        async with self._address_lock(address):
            existing = await self.get(address)
            if existing is None:
                raise RecordNotFoundError(address)
            record = existing.with_social(social_score, analysis, now)
            await self._put(record)
        return record

    async def ping(self) -> bool:
        with self._guard("ping"):
            return await self._redis.ping()
