from typing import Dict

import aiohttp

from .config import HttpCfg

CHUNK_SIZE = 64 * 1024


def client_timeout(http_cfg: HttpCfg) -> aiohttp.ClientTimeout:
    # no total deadline: a large archive may legitimately take long
    return aiohttp.ClientTimeout(
        total=None,
        sock_connect=http_cfg.timeout_connect,
        sock_read=http_cfg.timeout_read,
    )


def request_headers(http_cfg: HttpCfg, accept: str = "*/*") -> Dict[str, str]:
    return {
        "User-Agent": http_cfg.user_agent,
        "Accept": accept,
    }


def open_session(http_cfg: HttpCfg) -> aiohttp.ClientSession:
    connector = aiohttp.TCPConnector(limit=0, ttl_dns_cache=300)
    return aiohttp.ClientSession(timeout=client_timeout(http_cfg), connector=connector)
