import asyncio
import enum
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Iterable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .config import StoreCfg
from .errors import StoreProtocolError, UnsupportedRecordType
from .records import Record, parse_record

logger = logging.getLogger("aggregator.store")


# ------------------------- connection pool -------------------------

class StorePool:
    """Connection pool for the redis store.

    Built once at startup and handed to every IngestStore. With
    ``max_active > 0`` callers wait for a free connection instead of failing
    when the pool is exhausted.
    """

    def __init__(self, cfg: StoreCfg):
        self.cfg = cfg
        kwargs = dict(
            host=cfg.host,
            port=cfg.port,
            db=cfg.db,
            password=cfg.password,
            decode_responses=False,
        )
        if cfg.max_active > 0:
            self._pool = aioredis.BlockingConnectionPool(
                max_connections=cfg.max_active, timeout=None, **kwargs
            )
        else:
            self._pool = aioredis.ConnectionPool(**kwargs)
        self._client = aioredis.Redis(connection_pool=self._pool)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aioredis.Redis]:
        # one dedicated pooled connection for the duration of the block
        async with self._client.client() as conn:
            yield conn

    async def ping(self) -> bool:
        async with self.connection() as conn:
            return bool(await conn.ping())

    async def wait_ready(self) -> None:
        attempts = self.cfg.connect_attempts
        last_err = None
        for attempt in range(1, attempts + 1):
            try:
                await self.ping()
                logger.info(f"STORE_READY: host={self.cfg.host} port={self.cfg.port}")
                return
            except (RedisError, OSError) as e:
                last_err = e
                logger.warning(f"STORE_NOT_READY: attempt={attempt}/{attempts} err={e}")
                if attempt < attempts:
                    await asyncio.sleep(self.cfg.connect_delay_sec)
        raise StoreProtocolError(f"Store not ready after {attempts} attempts. Last error: {last_err}")

    async def close(self) -> None:
        await self._pool.disconnect()


# ------------------------- dedupe + append -------------------------

class IngestOutcome(enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class IngestStats:
    counts: Dict[IngestOutcome, int] = field(default_factory=lambda: {o: 0 for o in IngestOutcome})

    def add(self, outcome: IngestOutcome) -> None:
        self.counts[outcome] += 1

    def __str__(self) -> str:
        return " ".join(f"{o.value}={n}" for o, n in self.counts.items())


class IngestStore:
    """Reconciles records against the store.

    Per record, on a single connection: GET the stored blob by key; if it
    differs, SET the new blob, LREM one copy of the old blob from the list
    and RPUSH the new one. The sequence is not atomic: two writers racing
    on the same key can leave zero or two list entries for it, and a
    failure after SET leaves the list out of step with the map.
    """

    def __init__(self, pool, list_name: str = "NEWS_XML"):
        self.pool = pool
        self.list_name = list_name

    async def ingest(self, record: Record) -> IngestOutcome:
        key = record.key
        try:
            async with self.pool.connection() as conn:
                old = await conn.get(key)
                if old is not None and old == record.raw:
                    return IngestOutcome.UNCHANGED

                await conn.set(key, record.raw)
                if old is not None:
                    await conn.lrem(self.list_name, 1, old)
                await conn.rpush(self.list_name, record.raw)
        except (RedisError, OSError) as e:
            raise StoreProtocolError(f"Store command failed for key={key}: {e}") from e

        outcome = IngestOutcome.CREATED if old is None else IngestOutcome.UPDATED
        logger.debug(f"INGEST: key={key} outcome={outcome.value}")
        return outcome

    async def ingest_files(self, paths: Iterable[str], record_ext: str = ".xml") -> IngestStats:
        stats = IngestStats()
        for path in paths:
            if os.path.splitext(path)[1] != record_ext:
                raise UnsupportedRecordType(f"Invalid file type (expected {record_ext}): {path}")
            record = await asyncio.to_thread(parse_record, path)
            stats.add(await self.ingest(record))
        return stats
