import asyncio
import logging
import os
import queue
import sys
from logging.handlers import QueueHandler, QueueListener
from pathlib import Path
from typing import Optional, TextIO

from .config import DEFAULT_CONFIG_PATH, AggregatorCfg, load_config, parse_cfg
from .errors import AggregatorError, ConfigError, PipelineFailed, StoreProtocolError
from .pipeline import aggregate
from .store import StorePool

logger = logging.getLogger("aggregator")

EXIT_OK = 0
EXIT_FAILED_UNITS = 1
EXIT_FATAL = 2


def setup_file_logger(path: str, level: str = "INFO") -> tuple[logging.Logger, QueueListener]:
    Path(path).parent.mkdir(parents=True, exist_ok=True)

    q = queue.Queue()
    handler = logging.FileHandler(path, encoding="utf-8")
    formatter = logging.Formatter("[%(asctime)s] %(levelname)s %(message)s")
    handler.setFormatter(formatter)

    listener = QueueListener(q, handler)
    listener.start()

    logger.setLevel(getattr(logging, level, logging.INFO))
    logger.handlers.clear()
    logger.addHandler(QueueHandler(q))
    logger.propagate = False

    return logger, listener


def read_url(default: str, stdin: Optional[TextIO] = None) -> str:
    stdin = stdin or sys.stdin
    print(f"Enter the URL to scan (default - {default}):", end="", flush=True)
    line = stdin.readline().strip()
    return line or default


async def run(cfg: AggregatorCfg, url: str) -> int:
    pool = StorePool(cfg.store)
    try:
        try:
            await pool.wait_ready()
        except StoreProtocolError as e:
            logger.error(f"FATAL: {e}")
            print(f"FATAL: {e}", file=sys.stderr, flush=True)
            return EXIT_FATAL

        try:
            await aggregate(url, cfg, pool)
        except PipelineFailed as e:
            for failure in e.errors:
                logger.error(f"UNIT_FAILED: link={failure.link} err={failure.original!r}")
            print(f"FAILED: {e}", file=sys.stderr, flush=True)
            return EXIT_FAILED_UNITS
        except AggregatorError as e:
            # link discovery or download root creation
            logger.error(f"FATAL: {e}")
            print(f"FATAL: {e}", file=sys.stderr, flush=True)
            return EXIT_FATAL
    finally:
        await pool.close()

    return EXIT_OK


def main() -> int:
    if len(sys.argv) >= 2:
        cfg_path = sys.argv[1]
    else:
        cfg_path = os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH)

    try:
        cfg = parse_cfg(load_config(cfg_path))
    except ConfigError as e:
        print(f"FATAL: {e}", file=sys.stderr, flush=True)
        return EXIT_FATAL

    _, listener = setup_file_logger(cfg.logging.file, cfg.logging.level)
    try:
        url = read_url(cfg.logic.default_url)
        logger.info(f"RUN: url={url} config={cfg_path}")
        return asyncio.run(run(cfg, url))
    finally:
        listener.stop()


if __name__ == "__main__":
    raise SystemExit(main())
