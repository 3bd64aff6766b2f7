import asyncio
import enum
import logging
import os

import aiohttp

from .config import HttpCfg
from .errors import FilesystemError, NetworkError
from .net import CHUNK_SIZE, client_timeout, request_headers

logger = logging.getLogger("aggregator.fetch")

PART_SUFFIX = ".part"


class Presence(enum.Enum):
    MISSING = "missing"
    PRESENT = "present"
    # a download was interrupted; only the .part file was left behind
    INCOMPLETE = "incomplete"


def probe_path(path: str) -> Presence:
    if os.path.exists(path):
        return Presence.PRESENT
    if os.path.exists(path + PART_SUFFIX):
        return Presence.INCOMPLETE
    return Presence.MISSING


def archive_path(download_dir: str, url: str) -> str:
    name = url[url.rfind("/") + 1:]
    if not name:
        raise FilesystemError(f"Cannot derive a file name from url: {url}")
    return os.path.join(download_dir, name)


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"CLEANUP_FAIL: path={path} err={e}")


async def fetch_archive(
    session: aiohttp.ClientSession,
    url: str,
    dest: str,
    http_cfg: HttpCfg,
) -> bool:
    """Download ``url`` to ``dest`` unless something already exists there.

    Returns True when a download actually happened, False on a cache hit.
    The body is streamed to ``dest + '.part'`` and moved into place only
    once it is complete.
    """
    presence = probe_path(dest)
    if presence is Presence.PRESENT:
        logger.info(f"CACHED: url={url} path={dest}")
        return False
    if presence is Presence.INCOMPLETE:
        logger.warning(f"RESUME_DISCARD: leftover partial download, fetching again path={dest}")

    tmp = dest + PART_SUFFIX
    try:
        os.makedirs(os.path.dirname(dest) or ".", exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"Cannot create directory for {dest}: {e}") from e

    written = 0
    try:
        async with session.get(
            url,
            headers=request_headers(http_cfg),
            timeout=client_timeout(http_cfg),
            allow_redirects=True,
        ) as resp:
            if not 200 <= resp.status < 300:
                raise NetworkError(f"Download failed with HTTP {resp.status}: {url}")

            with open(tmp, "wb") as f:
                async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                    await asyncio.to_thread(f.write, chunk)
                    written += len(chunk)

        os.replace(tmp, dest)

    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        _discard(tmp)
        raise NetworkError(f"Cannot download {url}: {e!r}") from e
    except OSError as e:
        _discard(tmp)
        raise FilesystemError(f"Cannot write {dest}: {e}") from e
    except BaseException:
        _discard(tmp)
        raise

    logger.info(f"DOWNLOADED: url={url} path={dest} bytes={written}")
    return True
