import asyncio
import os
import sys
from collections import Counter
from typing import List

from lxml import etree

from .config import DEFAULT_CONFIG_PATH, AggregatorCfg, load_config, parse_cfg
from .errors import ConfigError
from .store import StorePool

EXIT_FATAL = 2


def _post_url(raw: bytes) -> str:
    try:
        root = etree.fromstring(raw, parser=etree.XMLParser(resolve_entities=False, no_network=True))
    except etree.XMLSyntaxError:
        return "<unparseable>"
    el = root.find("post_url")
    return "".join(el.itertext()) if el is not None else "<missing>"


async def verify_store(pool: StorePool, list_name: str, sample_n: int = 30) -> Counter:
    async with pool.connection() as conn:
        total = await conn.llen(list_name)
        entries: List[bytes] = await conn.lrange(list_name, 0, -1)

    counts = Counter(entries)
    duplicated = sum(1 for n in counts.values() if n > 1)

    print(f"VERIFY: list={list_name} entries = {total}", flush=True)
    print(f"VERIFY: distinct entries = {len(counts)}", flush=True)
    print(f"VERIFY: duplicated entries = {duplicated}", flush=True)

    # sample docs (latest first)
    print(f"VERIFY: sample {sample_n} entries (latest first):", flush=True)
    for i, raw in enumerate(reversed(entries[-sample_n:] if sample_n > 0 else []), start=1):
        print(f"  sample[{i}]: bytes={len(raw)} post_url={_post_url(raw)}", flush=True)

    return counts


async def _run(cfg: AggregatorCfg, sample_n: int) -> None:
    pool = StorePool(cfg.store)
    try:
        await verify_store(pool, cfg.store.list_name, sample_n=sample_n)
    finally:
        await pool.close()


def main() -> int:
    cfg_path = sys.argv[1] if len(sys.argv) >= 2 else os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH)
    try:
        cfg = parse_cfg(load_config(cfg_path))
    except ConfigError as e:
        print(f"FATAL: {e}", file=sys.stderr, flush=True)
        return EXIT_FATAL
    n = int(os.getenv("VERIFY_SAMPLE_N", "30"))
    asyncio.run(_run(cfg, n))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
