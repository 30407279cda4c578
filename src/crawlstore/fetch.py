from __future__ import annotations
import asyncio
import aiohttp
import logging
from typing import List, Optional
from urllib.parse import urljoin
from .config import HttpConfig
from .record import CrawlRecord

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)

def _peer_ip(resp: aiohttp.ClientResponse) -> str:
    """Remote address of the connection that served the response, if still known."""
    conn = resp.connection
    if conn is None or conn.transport is None:
        return ""
    peer = conn.transport.get_extra_info("peername")
    if not peer:
        return ""
    return str(peer[0])

def request_bytes(resp: aiohttp.ClientResponse) -> bytes:
    """Reconstruct the request line and headers that were sent."""
    info = resp.request_info
    lines = [f"{info.method} {info.url.raw_path_qs or '/'} HTTP/1.1"]
    lines.extend(f"{k}: {v}" for k, v in info.headers.items())
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1", errors="replace")

def response_header_bytes(resp: aiohttp.ClientResponse) -> bytes:
    """Status line plus the raw response headers as received."""
    version = f"{resp.version.major}.{resp.version.minor}" if resp.version else "1.1"
    out = [f"HTTP/{version} {resp.status} {resp.reason or ''}".rstrip().encode("latin-1", errors="replace")]
    out.extend(k + b": " + v for k, v in resp.raw_headers)
    return b"\r\n".join(out) + b"\r\n\r\n"

async def fetch_record(url: str, cfg: HttpConfig, via: Optional[str] = None,
                       path_from_seed: Optional[str] = None, source_tag: Optional[str] = None) -> CrawlRecord:
    """Fetch a single url into a CrawlRecord. Failures give status 0 and no content."""
    timeout = aiohttp.ClientTimeout(total=cfg.timeout)
    async with aiohttp.ClientSession(headers={"User-Agent": cfg.user_agent}, timeout=timeout) as session:
        try:
            # each hop of a redirect is its own record; the caller follows redirect_url
            async with session.get(url, allow_redirects=False) as resp:
                ip = _peer_ip(resp)
                location = resp.headers.get("Location")
                redirect_url = urljoin(url, location) if location and resp.status in REDIRECT_STATUSES else None
                content = await resp.read()
                return CrawlRecord(
                    url=url,
                    fetch_status=resp.status,
                    ip=ip,
                    via=via,
                    path_from_seed=path_from_seed,
                    source_tag=source_tag,
                    content_type=resp.headers.get("Content-Type"),
                    request=request_bytes(resp),
                    response_headers=response_header_bytes(resp),
                    content=content,
                    redirect_url=redirect_url,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning("Fetch of %s failed: %s", url, e)
            return CrawlRecord(url=url, fetch_status=0, via=via,
                               path_from_seed=path_from_seed, source_tag=source_tag)

async def fetch_many(urls: List[str], cfg: HttpConfig) -> List[CrawlRecord]:
    sem = asyncio.Semaphore(cfg.max_concurrency)
    results = []

    async def _task(u: str):
        async with sem:
            return await fetch_record(u, cfg)

    tasks = [_task(u) for u in urls]
    for coro in asyncio.as_completed(tasks):
        results.append(await coro)
    return results
