from __future__ import annotations
import logging
from typing import Callable, Optional
from .config import PoolSettings, ProcessorSettings, StoreParameters
from .errors import CrawlStoreError
from .keys import create_url_key
from .pool import StoreWriterPool
from .record import CrawlRecord, ProcessResult
from .store import SQLiteStore

logger = logging.getLogger(__name__)

Predicate = Callable[[CrawlRecord], bool]

WRITABLE_SCHEMES = ("dns", "http", "https", "ftp")

def default_should_process(record: CrawlRecord) -> bool:
    return True

def default_should_write(record: CrawlRecord) -> bool:
    """Skip records that carry nothing worth archiving, annotating why."""
    scheme = record.url.split(":", 1)[0].lower() if ":" in record.url else ""
    if scheme not in WRITABLE_SCHEMES:
        record.annotate_unwritten("scheme")
        return False
    if record.fetch_status <= 0:
        record.annotate_unwritten("status")
        return False
    return True

def default_host_address(record: CrawlRecord) -> str:
    return record.ip or ""

class WriterProcessor:
    """Decides per record whether to skip it or write it, and writes it.

    Skips are annotated on the record as unwritten:<reason>; store and pool
    failures are appended to the record's non_fatal_failures. Neither stops
    the pipeline.
    """

    def __init__(self, store: SQLiteStore,
                 params: Optional[StoreParameters] = None,
                 pool_settings: Optional[PoolSettings] = None,
                 settings: Optional[ProcessorSettings] = None,
                 should_process: Predicate = default_should_process,
                 should_write: Predicate = default_should_write,
                 host_address: Callable[[CrawlRecord], str] = default_host_address):
        self.store = store
        self.params = params or StoreParameters()
        self.pool_settings = pool_settings or PoolSettings()
        self.settings = settings or ProcessorSettings()
        self._should_process = should_process
        self._should_write = should_write
        self._host_address = host_address
        self.pool: Optional[StoreWriterPool] = None
        self.total_bytes_written = 0

    async def start(self):
        if self.pool is None:
            self.pool = StoreWriterPool(self.store, self.params, self.pool_settings)
            logger.info("Writer pool ready: tables %s/%s under %s, max_active=%d",
                        self.params.url_table_name, self.params.content_table_name,
                        self.store.data_dir, self.pool_settings.max_active)

    async def stop(self):
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *exc):
        await self.stop()

    # ------------------ decisions ------------------

    async def should_process(self, record: CrawlRecord) -> bool:
        if not self._should_process(record):
            record.annotate_unwritten("disabled")
            return False
        if self.settings.only_process_new and not await self.is_record_new(record):
            record.annotate_unwritten("exists")
            return False
        return True

    def should_write(self, record: CrawlRecord) -> bool:
        if not self._should_write(record):
            return False
        if record.content_size > self.settings.max_content_size:
            record.annotate_unwritten("size")
            logger.warning("Content size for %s is too large (%d) - maximum content size is: %d",
                           record.url, record.content_size, self.settings.max_content_size)
            return False
        return True

    async def is_record_new(self, record: CrawlRecord) -> bool:
        """Whether the url has no row yet. Any failure counts as not new."""
        pool = self._require_pool()
        row_key = create_url_key(record.url)
        try:
            writer = await pool.borrow()
        except CrawlStoreError as e:
            logger.error("No writer could be borrowed from the pool %r: %s", pool, e)
            return False
        try:
            if await writer.url_table.exists(row_key):
                logger.debug("Not a new record - url %s has the existing row key %s", record.url, row_key)
                return False
        except CrawlStoreError as e:
            logger.error("Failed to determine if record %s is new, treating it as existing: %s", row_key, e)
            return False
        finally:
            await pool.return_member(writer)
        return True

    # ------------------ writing ------------------

    async def process(self, record: CrawlRecord) -> ProcessResult:
        self._require_pool()
        if not await self.should_process(record):
            return ProcessResult.PROCEED
        try:
            if self.should_write(record):
                return await self.write(record)
            logger.info("Does not write %s", record.url)
        except (CrawlStoreError, OSError) as e:
            record.non_fatal_failures.append(e)
            logger.error("Failed write of record: %s", record.url, exc_info=True)
        return ProcessResult.PROCEED

    async def write(self, record: CrawlRecord) -> ProcessResult:
        pool = self._require_pool()
        writer = await pool.borrow()
        start = writer.position
        try:
            await writer.write(record, self._host_address(record))
        finally:
            self.total_bytes_written += writer.position - start
            await pool.return_member(writer)
        return self.check_bytes_written()

    def check_bytes_written(self) -> ProcessResult:
        limit = self.settings.max_total_bytes
        if limit > 0 and self.total_bytes_written >= limit:
            logger.info("Total bytes written %d reached the limit of %d", self.total_bytes_written, limit)
            return ProcessResult.FINISHED
        return ProcessResult.PROCEED

    def _require_pool(self) -> StoreWriterPool:
        if self.pool is None:
            raise RuntimeError("WriterProcessor.start() has not been called")
        return self.pool
