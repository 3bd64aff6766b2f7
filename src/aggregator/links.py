import asyncio
import logging
from typing import List

import aiohttp
from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError

from .config import HttpCfg
from .errors import LinkDiscoveryError
from .net import client_timeout, request_headers

logger = logging.getLogger("aggregator.links")


def extract_links(html: bytes, base_url: str, selector: str, archive_ext: str) -> List[str]:
    """Pick archive hrefs out of a listing page, in document order.

    Relative hrefs are joined to ``base_url`` by plain concatenation, not
    RFC 3986 resolution; anything already starting with ``http`` is kept as is.
    """
    soup = BeautifulSoup(html or b"", "lxml")

    links: List[str] = []
    for a in soup.select(selector):
        href = a.get("href")
        if not href or not href.endswith(archive_ext):
            continue
        if not href.startswith("http"):
            href = base_url + href
        links.append(href)
    return links


async def get_links(
    session: aiohttp.ClientSession,
    url: str,
    http_cfg: HttpCfg,
    selector: str = "a[href]",
    archive_ext: str = ".zip",
) -> List[str]:
    try:
        async with session.get(
            url,
            headers=request_headers(http_cfg, "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8"),
            timeout=client_timeout(http_cfg),
            allow_redirects=True,
        ) as resp:
            if not 200 <= resp.status < 300:
                raise LinkDiscoveryError(f"Listing page returned HTTP {resp.status}: {url}")
            body = await resp.read()
            base_url = str(resp.url)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        raise LinkDiscoveryError(f"Cannot retrieve listing page {url}: {e!r}") from e

    try:
        links = extract_links(body, base_url, selector, archive_ext)
    except SelectorSyntaxError as e:
        raise LinkDiscoveryError(f"Cannot parse listing page {url}: {e}") from e

    logger.info(f"LINKS: url={base_url} found={len(links)}")
    return links
