from __future__ import annotations
import aiosqlite, asyncio, logging, os, sqlite3, time
from typing import Dict, Iterable, Optional, Tuple, Union
from .config import DATA_DIR, get_table_path
from .errors import StoreIOError

logger = logging.getLogger(__name__)

Value = Union[bytes, str, int]
# (row_key, family, qualifier, value)
Cell = Tuple[Value, str, Value, Value]

# ------------------ encoding helpers ------------------

def to_bytes(value: Value) -> bytes:
    """Encode keys, qualifiers and values the same way everywhere: text as UTF-8."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, bool):
        raise TypeError("bool is not a storable value")
    if isinstance(value, int):
        return str(value).encode("ascii")
    if isinstance(value, str):
        return value.encode("utf-8")
    raise TypeError(f"Cannot store value of type {type(value).__name__}")

# ------------------ schema ------------------

CELLS_SCHEMA = """
CREATE TABLE IF NOT EXISTS cells (
  row_key BLOB NOT NULL,
  family TEXT NOT NULL,
  qualifier BLOB NOT NULL,
  value BLOB NOT NULL,
  updated_at INTEGER,
  PRIMARY KEY (row_key, family, qualifier)
) WITHOUT ROWID
"""

UPSERT_CELL = """
INSERT INTO cells(row_key, family, qualifier, value, updated_at)
VALUES (?,?,?,?,?)
ON CONFLICT(row_key, family, qualifier) DO UPDATE SET
  value=excluded.value,
  updated_at=excluded.updated_at
"""

INSERT_CELL_IF_ABSENT = """
INSERT INTO cells(row_key, family, qualifier, value, updated_at)
VALUES (?,?,?,?,?)
ON CONFLICT(row_key, family, qualifier) DO NOTHING
"""

UPDATE_CELL_IF_EQUAL = """
UPDATE cells SET value = ?, updated_at = ?
WHERE row_key = ? AND family = ? AND qualifier = ? AND value = ?
"""

# ------------------ tables ------------------

class Table:
    """One logical wide-column table backed by its own SQLite file.

    A Table owns a single connection and must not be used by two tasks at
    once; the writer pool guarantees that for the tables it hands out.
    """

    def __init__(self, name: str, conn: aiosqlite.Connection):
        self.name = name
        self._conn = conn
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self):
        if self._closed:
            raise StoreIOError(f"table {self.name} is closed")

    async def put(self, row_key: Value, family: str, qualifier: Value, value: Value):
        """Upsert a single cell."""
        self._check_open()
        try:
            await self._conn.execute(
                UPSERT_CELL,
                (to_bytes(row_key), family, to_bytes(qualifier), to_bytes(value), int(time.time())),
            )
        except sqlite3.Error as e:
            raise StoreIOError(f"put into {self.name} failed: {e}") from e

    async def put_many(self, cells: Iterable[Cell]):
        """Upsert a batch of cells in one transaction."""
        self._check_open()
        now = int(time.time())
        batch_data = [
            (to_bytes(row_key), family, to_bytes(qualifier), to_bytes(value), now)
            for row_key, family, qualifier, value in cells
        ]
        if not batch_data:
            return
        try:
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                await self._conn.executemany(UPSERT_CELL, batch_data)
                await self._conn.commit()
            except BaseException:
                await self._conn.rollback()
                raise
        except sqlite3.Error as e:
            raise StoreIOError(f"batch put into {self.name} failed: {e}") from e

    async def exists(self, row_key: Value) -> bool:
        """Whether the row has any cell."""
        self._check_open()
        try:
            cursor = await self._conn.execute(
                "SELECT 1 FROM cells WHERE row_key = ? LIMIT 1", (to_bytes(row_key),))
            row = await cursor.fetchone()
            await cursor.close()
        except sqlite3.Error as e:
            raise StoreIOError(f"exists on {self.name} failed: {e}") from e
        return row is not None

    async def get(self, row_key: Value) -> Dict[Tuple[str, bytes], bytes]:
        """Return every cell of a row as {(family, qualifier): value}."""
        self._check_open()
        try:
            cursor = await self._conn.execute(
                "SELECT family, qualifier, value FROM cells WHERE row_key = ? ORDER BY family, qualifier",
                (to_bytes(row_key),),
            )
            rows = await cursor.fetchall()
            await cursor.close()
        except sqlite3.Error as e:
            raise StoreIOError(f"get on {self.name} failed: {e}") from e
        return {(family, bytes(qualifier)): bytes(value) for family, qualifier, value in rows}

    async def check_and_put(self, row_key: Value, family: str, qualifier: Value,
                            expected: Optional[Value], value: Value) -> bool:
        """Atomically set a cell if its current value matches `expected`.

        `expected=None` means the cell must be absent. Returns True when the
        value was written.
        """
        self._check_open()
        now = int(time.time())
        key, qual, val = to_bytes(row_key), to_bytes(qualifier), to_bytes(value)
        try:
            if expected is None:
                cursor = await self._conn.execute(INSERT_CELL_IF_ABSENT, (key, family, qual, val, now))
            else:
                cursor = await self._conn.execute(
                    UPDATE_CELL_IF_EQUAL, (val, now, key, family, qual, to_bytes(expected)))
            changed = cursor.rowcount
            await cursor.close()
        except sqlite3.Error as e:
            raise StoreIOError(f"check_and_put on {self.name} failed: {e}") from e
        return changed == 1

    async def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            await self._conn.close()
        except sqlite3.Error as e:
            raise StoreIOError(f"closing {self.name} failed: {e}") from e

# ------------------ store client ------------------

class SQLiteStore:
    """Opens named tables as SQLite files under `data_dir`."""

    def __init__(self, data_dir: str = DATA_DIR, timeout: float = 30.0):
        self.data_dir = data_dir
        self.timeout = timeout
        self._initialized: set = set()
        self._init_lock = asyncio.Lock()

    def table_path(self, name: str) -> str:
        return get_table_path(self.data_dir, name)

    async def _init_table(self, path: str):
        async with self._init_lock:
            if path in self._initialized:
                return
            async with aiosqlite.connect(path, timeout=self.timeout, isolation_level=None) as db:
                await db.execute("PRAGMA journal_mode=WAL")
                await db.execute(CELLS_SCHEMA)
            self._initialized.add(path)
            logger.info("Initialized table store %s", path)

    async def open_table(self, name: str) -> Table:
        """Open a fresh connection to the named table, creating it if needed."""
        path = self.table_path(name)
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            await self._init_table(path)
            conn = await aiosqlite.connect(path, timeout=self.timeout, isolation_level=None)
        except (OSError, sqlite3.Error) as e:
            raise StoreIOError(f"Cannot open table {name} at {path}: {e}") from e
        try:
            await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.execute("PRAGMA temp_store=MEMORY")
        except sqlite3.Error as e:
            await conn.close()
            raise StoreIOError(f"Cannot configure table {name}: {e}") from e
        return Table(name, conn)
