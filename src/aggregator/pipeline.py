import asyncio
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

import aiohttp

from .config import AggregatorCfg, HttpCfg
from .errors import FilesystemError, PipelineFailed, UnitFailed
from .fetch import archive_path, fetch_archive
from .links import get_links
from .net import open_session
from .store import IngestStats, IngestStore
from .unpack import extraction_dir, unpack_archive

logger = logging.getLogger("aggregator.pipeline")

FetchFn = Callable[[aiohttp.ClientSession, str, str, HttpCfg], Awaitable[bool]]


@dataclass
class RunReport:
    links: List[str]
    succeeded: int = 0
    failures: List[UnitFailed] = field(default_factory=list)
    ingested: IngestStats = field(default_factory=IngestStats)


class Aggregator:
    """Runs fetch -> unpack -> parse -> ingest for every archive on a listing page.

    One task per link. Only the download step is gated by the
    ``max_concurrent_downloads`` semaphore; its slot is released as soon as
    the download ends so unpacking and ingestion are not throttled. A failing
    unit never cancels its siblings.
    """

    def __init__(
        self,
        cfg: AggregatorCfg,
        store: IngestStore,
        session: aiohttp.ClientSession,
        fetch: FetchFn = fetch_archive,
    ):
        self.cfg = cfg
        self.store = store
        self.session = session
        self.fetch = fetch
        self._downloads: Optional[asyncio.Semaphore] = None

    async def discover(self, url: str) -> List[str]:
        return await get_links(
            self.session,
            url,
            self.cfg.http,
            selector=self.cfg.links.selector,
            archive_ext=self.cfg.logic.archive_ext,
        )

    async def process_link(self, link: str) -> IngestStats:
        logic = self.cfg.logic
        dest = archive_path(logic.download_dir, link)
        out_dir = extraction_dir(dest, logic.archive_ext)

        async with self._downloads:
            await self.fetch(self.session, link, dest, self.cfg.http)

        files = await asyncio.to_thread(unpack_archive, dest, out_dir)
        return await self.store.ingest_files(files, logic.record_ext)

    async def _unit(self, link: str, report: RunReport) -> None:
        try:
            stats = await self.process_link(link)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failure = UnitFailed(link, e)
            report.failures.append(failure)
            logger.error(f"FAIL: link={link} err={e!r}")
            print(f"FAIL: link={link} err={e}", file=sys.stderr, flush=True)
            return

        report.succeeded += 1
        for outcome, n in stats.counts.items():
            report.ingested.counts[outcome] += n
        logger.info(f"DONE: link={link} {stats}")

    async def run(self, url: str) -> RunReport:
        download_dir = self.cfg.logic.download_dir
        try:
            os.makedirs(download_dir, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Cannot create download directory {download_dir}: {e}") from e

        # discovery failure is fatal: nothing gets downloaded
        links = await self.discover(url)

        self._downloads = asyncio.Semaphore(self.cfg.logic.max_concurrent_downloads)
        report = RunReport(links=links)

        print(
            f"START: url={url} links={len(links)} "
            f"max_concurrent_downloads={self.cfg.logic.max_concurrent_downloads}",
            flush=True,
        )
        await asyncio.gather(*(self._unit(link, report) for link in links))

        print("AGGREGATE SUMMARY:", flush=True)
        print(f"  links:     {len(links)}", flush=True)
        print(f"  succeeded: {report.succeeded}", flush=True)
        print(f"  failed:    {len(report.failures)}", flush=True)
        print(f"  records:   {report.ingested}", flush=True)

        if report.failures:
            raise PipelineFailed(report.failures)
        return report


async def aggregate(url: str, cfg: AggregatorCfg, pool, fetch: FetchFn = fetch_archive) -> RunReport:
    store = IngestStore(pool, cfg.store.list_name)
    async with open_session(cfg.http) as session:
        return await Aggregator(cfg, store, session, fetch=fetch).run(url)
