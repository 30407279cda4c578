from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, List, Optional
from .config import DATA_DIR, HttpConfig, PoolSettings, ProcessorSettings, StoreParameters
from .fetch import fetch_many
from .keys import create_url_key
from .processor import WriterProcessor
from .record import CrawlRecord, ProcessResult
from .store import SQLiteStore
from .writer import StoreWriter

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 10

async def fetch_with_redirects(urls: List[str], cfg: HttpConfig, max_redirects: int = MAX_REDIRECTS) -> List[CrawlRecord]:
    """Fetch urls, then each redirect target in turn as a record of its own.

    A target gets the redirecting url as its via and an "R" appended to its
    path from seed. Each url is fetched at most once.
    """
    records: List[CrawlRecord] = []
    seen = set(urls)
    origins: Dict[str, CrawlRecord] = {}
    pending = list(urls)
    for _ in range(max_redirects + 1):
        if not pending:
            break
        fetched = await fetch_many(pending, cfg)
        pending = []
        for record in fetched:
            parent = origins.get(record.url)
            if parent is not None:
                record.via = parent.url
                record.path_from_seed = (parent.path_from_seed or "") + "R"
            records.append(record)
            target = record.redirect_url
            if target and target not in seen:
                seen.add(target)
                origins[target] = record
                pending.append(target)
    if pending:
        logger.warning("Stopped following redirects after %d hops: %s", max_redirects, ", ".join(pending))
    return records

async def archive_urls(urls: List[str], data_dir: str = DATA_DIR, http_config: HttpConfig | None = None,
                       params: StoreParameters | None = None, pool_settings: PoolSettings | None = None,
                       settings: ProcessorSettings | None = None, quiet: bool = False) -> List[CrawlRecord]:
    """Fetch urls and write them through a WriterProcessor.

    - In only-new mode urls that already have a row are not fetched at all.
    - Records are processed concurrently; the writer pool bounds how many
      write at the same time.
    - Redirect targets are fetched and written as records of their own.
    """
    cfg = http_config or HttpConfig()
    settings = settings or ProcessorSettings()
    store = SQLiteStore(data_dir)

    async with WriterProcessor(store, params, pool_settings, settings) as processor:
        to_fetch = []
        skipped = []
        for url in urls:
            if settings.only_process_new and not await processor.is_record_new(CrawlRecord(url=url, fetch_status=0)):
                record = CrawlRecord(url=url, fetch_status=0)
                record.annotate_unwritten("exists")
                skipped.append(record)
                continue
            to_fetch.append(url)

        records = await fetch_with_redirects(to_fetch, cfg)
        results = await asyncio.gather(*(processor.process(r) for r in records))

        for record, result in zip(records, results):
            if not quiet:
                note = ", ".join(record.annotations) or "written"
                if record.non_fatal_failures:
                    note = f"failed: {record.non_fatal_failures[-1]}"
                print(f"[{record.fetch_status}] {record.url} -> {create_url_key(record.url)} ({note})")
            if result is ProcessResult.FINISHED:
                logger.info("Byte limit reached after %s", record.url)
        if not quiet:
            for record in skipped:
                print(f"[---] {record.url} (already stored)")
            print(f"Wrote {processor.total_bytes_written} bytes for {len(records)} fetched url(s)")

    return skipped + records

def _decode(value: bytes) -> str:
    return value.decode("utf-8", errors="replace")

async def describe_url(url: str, data_dir: str = DATA_DIR, params: StoreParameters | None = None) -> Optional[Dict[str, Any]]:
    """Read back what is stored for a url: its url row and, if any, its content row."""
    params = params or StoreParameters()
    writer = await StoreWriter.open(SQLiteStore(data_dir), params)
    try:
        row_key = create_url_key(url)
        row = await writer.url_table.get(row_key)
        if not row:
            return None
        family = params.curi_column_family
        columns = {_decode(q): v for (f, q), v in row.items() if f == family}
        info: Dict[str, Any] = {"row_key": row_key, "columns": columns}
        hash_key = columns.get(params.hash_column_name)
        if hash_key:
            content_row = await writer.content_table.get(hash_key)
            payload = content_row.get((params.content_column_family, params.content_column_name.encode("utf-8")))
            info["content_key"] = _decode(hash_key)
            info["content_size"] = len(payload) if payload is not None else None
            info["referrers"] = sorted(_decode(q) for (f, q) in content_row if f == family)
        return info
    finally:
        await writer.close()
