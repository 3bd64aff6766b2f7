"""Shared fixtures: an in-memory store pool, zip/XML builders and a local HTTP server."""

import io
import zipfile
from collections import Counter, defaultdict
from contextlib import asynccontextmanager
from typing import Dict, Optional, Tuple

import pytest
from aiohttp import web
from redis.exceptions import ConnectionError as RedisConnectionError

from aggregator.config import parse_cfg


# ------------------------- fake store -------------------------

class FakeRedis:
    """The handful of redis commands the aggregator uses, kept in memory."""

    def __init__(self):
        self.kv: Dict[str, bytes] = {}
        self.lists: Dict[str, list] = defaultdict(list)
        self.calls = []
        self.fail_on: Optional[str] = None

    def _call(self, cmd, *args):
        self.calls.append((cmd,) + args)
        if cmd == self.fail_on:
            raise RedisConnectionError(f"{cmd} failed")

    def commands(self):
        return [c[0] for c in self.calls]

    async def ping(self):
        self._call("PING")
        return True

    async def get(self, key):
        self._call("GET", key)
        return self.kv.get(key)

    async def set(self, key, value):
        self._call("SET", key, value)
        self.kv[key] = value
        return True

    async def lrem(self, name, count, value):
        self._call("LREM", name, count, value)
        items = self.lists[name]
        removed = 0
        kept = []
        for item in items:
            if item == value and (count == 0 or removed < abs(count)):
                removed += 1
                continue
            kept.append(item)
        self.lists[name] = kept
        return removed

    async def rpush(self, name, *values):
        self._call("RPUSH", name, *values)
        self.lists[name].extend(values)
        return len(self.lists[name])

    async def llen(self, name):
        self._call("LLEN", name)
        return len(self.lists[name])

    async def lrange(self, name, start, end):
        self._call("LRANGE", name, start, end)
        items = self.lists[name]
        return list(items[start:] if end == -1 else items[start:end + 1])


class FakePool:
    def __init__(self, server: Optional[FakeRedis] = None):
        self.server = server or FakeRedis()
        self.acquired = 0

    @asynccontextmanager
    async def connection(self):
        self.acquired += 1
        yield self.server

    async def close(self):
        pass


@pytest.fixture
def pool():
    return FakePool()


# ------------------------- builders -------------------------

def record_xml(post_url: str, post: str = "hello world", username: str = "alice") -> bytes:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<document>\n"
        "  <type>mainstream</type>\n"
        "  <forum>news.example.org</forum>\n"
        "  <forum_title>Example News</forum_title>\n"
        "  <discussion_title>Topic</discussion_title>\n"
        "  <language>english</language>\n"
        "  <gmt_offset>-5</gmt_offset>\n"
        "  <topic_url>http://news.example.org/topic</topic_url>\n"
        "  <topic_text>topic text</topic_text>\n"
        "  <spam_score>0.00</spam_score>\n"
        "  <post_num>1</post_num>\n"
        "  <post_id>p1</post_id>\n"
        f"  <post_url>{post_url}</post_url>\n"
        "  <post_date>20160101</post_date>\n"
        "  <post_time>1200</post_time>\n"
        f"  <username>{username}</username>\n"
        f"  <post><![CDATA[{post}]]></post>\n"
        "  <signature></signature>\n"
        "  <external_links></external_links>\n"
        "  <country>US</country>\n"
        "  <main_image></main_image>\n"
        "</document>\n"
    ).encode("utf-8")


def make_zip(entries: Dict[str, Tuple[bytes, int]]) -> bytes:
    """Build a zip in memory; ``entries`` maps name -> (data, unix mode).

    Names ending with '/' become directory entries.
    """
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, (data, mode) in entries.items():
            info = zipfile.ZipInfo(name)
            if name.endswith("/"):
                info.external_attr = ((0o040000 | mode) << 16) | 0x10
            else:
                info.external_attr = (0o100000 | mode) << 16
                info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, data)
    return buf.getvalue()


def records_zip(*post_urls: str) -> bytes:
    return make_zip({f"{i}.xml": (record_xml(u), 0o644) for i, u in enumerate(post_urls)})


def listing_page(*hrefs: str) -> bytes:
    rows = "".join(f'<tr><td><a href="{h}">{h}</a></td></tr>' for h in hrefs)
    return f"<html><body><table>{rows}</table></body></html>".encode("utf-8")


def make_cfg(tmp_path, **logic):
    raw = {
        "store": {"host": "localhost", "port": 6379, "max_idle": 1, "max_active": 4},
        "logic": {"max_concurrent_downloads": 2, "download_dir": str(tmp_path / "downloads")},
        "http": {"timeout_sec": {"connect": 5, "read": 10}},
    }
    raw["logic"].update(logic)
    return parse_cfg(raw)


# ------------------------- local http server -------------------------

@asynccontextmanager
async def serve(routes: Dict[str, Tuple[bytes, str]]):
    """Serve ``routes`` (path -> (body, content type)) on a free local port.

    Yields (base_url, hits) where ``hits`` counts requests per path.
    """
    hits: Counter = Counter()

    async def handler(request: web.Request) -> web.Response:
        hits[request.path] += 1
        if request.path not in routes:
            return web.Response(status=404, text="not found")
        body, ctype = routes[request.path]
        return web.Response(body=body, content_type=ctype)

    app = web.Application()
    app.router.add_route("GET", "/{tail:.*}", handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    host, port = runner.addresses[0][:2]
    try:
        yield f"http://{host}:{port}", hits
    finally:
        await runner.cleanup()
