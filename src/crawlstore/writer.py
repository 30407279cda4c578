from __future__ import annotations
import logging
from typing import List, Optional, Tuple
from .config import StoreParameters
from .keys import create_hash_key, create_url_key
from .record import CrawlRecord
from .store import Cell, SQLiteStore, Table, to_bytes

logger = logging.getLogger(__name__)

EMPTY = b""

def cells_size(cells: List[Cell]) -> int:
    return sum(len(to_bytes(k)) + len(to_bytes(q)) + len(to_bytes(v)) for k, _f, q, v in cells)

# ------------------ url table row ------------------

def build_url_row(record: CrawlRecord, ip: str, params: StoreParameters) -> Tuple[str, List[Cell]]:
    """Build the row key and the url table cells for a crawled record.

    Status, url and ip are always written; the other columns only when the
    record carries a value for them. The content hash column is added by the
    caller once the content has been hashed.
    """
    url = record.url
    row_key = create_url_key(url)
    family = params.curi_column_family

    cells: List[Cell] = [
        (row_key, family, params.status_column_name, record.fetch_status),
        (row_key, family, params.url_column_name, url),
        (row_key, family, params.ip_column_name, ip or ""),
    ]

    if record.path_from_seed is not None:
        path_from_seed = record.path_from_seed.strip()
        if path_from_seed:
            cells.append((row_key, family, params.path_from_seed_column_name, path_from_seed))

    # via is stored as the row key of the referring url
    if record.via is not None:
        via = record.via.strip()
        if via:
            cells.append((row_key, family, params.via_column_name, create_url_key(via)))

    if record.source_tag is not None:
        cells.append((row_key, family, params.source_tag_column_name, record.source_tag))

    if record.content_type is not None:
        cells.append((row_key, family, params.mime_type_column_name, record.content_type))

    if record.request:
        cells.append((row_key, family, params.request_column_name, record.request))

    if record.response_headers:
        cells.append((row_key, family, params.response_column_name, record.response_headers))

    return row_key, cells

# ------------------ content table ------------------

async def write_content(content_table: Table, row_key: str, hash_key: str, content: bytes,
                        params: StoreParameters) -> Tuple[bool, int]:
    """Store content under its hash unless another writer already claimed it.

    The payload cell is first claimed with an empty placeholder through an
    atomic put-if-absent; only the claimant follows up with the real bytes.
    A back reference to `row_key` is recorded either way.
    Returns (claimed, bytes written).
    """
    content_family = params.content_column_family
    content_column = params.content_column_name

    puts: List[Cell] = [(hash_key, params.curi_column_family, row_key, EMPTY)]

    claimed = await content_table.check_and_put(hash_key, content_family, content_column, None, EMPTY)
    if claimed:
        puts.append((hash_key, content_family, content_column, content))
    else:
        logger.debug("Content %s already stored, skipping payload for %s", hash_key, row_key)

    await content_table.put_many(puts)
    return claimed, cells_size(puts)

# ------------------ pool member ------------------

class StoreWriter:
    """Writer bound to open url and content tables.

    Instances are handed out by a WriterPool and used by one task at a time.
    """

    def __init__(self, url_table: Table, content_table: Table, params: StoreParameters, serial: int = 0):
        self.url_table = url_table
        self.content_table = content_table
        self.params = params
        self.serial = serial
        self._position = 0

    @classmethod
    async def open(cls, store: SQLiteStore, params: StoreParameters, serial: int = 0) -> "StoreWriter":
        url_table = await store.open_table(params.url_table_name)
        try:
            content_table = await store.open_table(params.content_table_name)
        except BaseException:
            await url_table.close()
            raise
        return cls(url_table, content_table, params, serial=serial)

    @property
    def position(self) -> int:
        """Bytes written through this writer so far."""
        return self._position

    async def exists(self, url: str) -> bool:
        """Whether the url table already has a row for this url."""
        return await self.url_table.exists(create_url_key(url))

    async def write(self, record: CrawlRecord, ip: str, params: Optional[StoreParameters] = None) -> str:
        """Write the record to the url table and its content to the content table.

        Content table writes happen before the url row so that a url row with a
        hash always points at a content row that was at least claimed. A failure
        of the url row write after the content write is not rolled back.
        Returns the row key.
        """
        params = params or self.params
        row_key, url_cells = build_url_row(record, ip, params)

        if record.content:
            hash_key = create_hash_key(record.content, params.hash_algorithm)
            url_cells.append((row_key, params.curi_column_family, params.hash_column_name, hash_key))
            _claimed, written = await write_content(self.content_table, row_key, hash_key, record.content, params)
            self._position += written

        await self.url_table.put_many(url_cells)
        self._position += cells_size(url_cells)
        return row_key

    async def close(self):
        try:
            await self.content_table.close()
        finally:
            await self.url_table.close()

    def __repr__(self):
        return f"<StoreWriter serial={self.serial} position={self._position}>"
