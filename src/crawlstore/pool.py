from __future__ import annotations
import asyncio, logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Generic, List, Optional, Set, TypeVar
from .config import PoolSettings, StoreParameters
from .errors import ConfigurationError, CrawlStoreError, PoolClosedError, PoolExhaustedError
from .store import SQLiteStore
from .writer import StoreWriter

logger = logging.getLogger(__name__)

M = TypeVar("M")

# ------------------ generic bounded pool ------------------

class WriterPool(Generic[M]):
    """Bounded pool of exclusive writers.

    Members are created lazily by `factory(serial)` until `max_active` exist;
    after that `borrow()` waits up to `max_wait_ms` for one to be returned.
    The idle list and the active count only change under `_cond`, so
    active + idle never exceeds `max_active`.
    """

    def __init__(self, factory: Callable[[int], Awaitable[M]], max_active: int, max_wait_ms: int):
        if max_active < 1:
            raise ConfigurationError(f"Pool max_active must be at least 1, got {max_active}")
        if max_wait_ms < 0:
            raise ConfigurationError(f"Pool max_wait_ms must not be negative, got {max_wait_ms}")
        self._factory = factory
        self.max_active = max_active
        self.max_wait_ms = max_wait_ms
        self._idle: List[M] = []
        self._borrowed: Set[int] = set()
        # borrowed members plus slots reserved for members being created
        self._active = 0
        self._serial = 0
        self._closed = False
        self._cond = asyncio.Condition()

    @property
    def num_active(self) -> int:
        return self._active

    @property
    def num_idle(self) -> int:
        return len(self._idle)

    @property
    def serial_no(self) -> int:
        """Number of members created so far."""
        return self._serial

    @property
    def closed(self) -> bool:
        return self._closed

    async def borrow(self) -> M:
        """Hand out an idle member, create one, or wait for one to be returned."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_wait_ms / 1000.0
        async with self._cond:
            while True:
                if self._closed:
                    raise PoolClosedError("Writer pool is closed")
                if self._idle:
                    member = self._idle.pop()
                    self._active += 1
                    self._borrowed.add(id(member))
                    return member
                if self._active + len(self._idle) < self.max_active:
                    # reserve the slot, build the member outside the lock
                    self._active += 1
                    self._serial += 1
                    serial = self._serial
                    break
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise PoolExhaustedError(
                        f"No writer available after {self.max_wait_ms}ms "
                        f"(active={self._active}, max_active={self.max_active})")
                try:
                    await asyncio.wait_for(self._cond.wait(), remaining)
                except asyncio.TimeoutError:
                    pass

        try:
            member = await self._factory(serial)
        except BaseException:
            async with self._cond:
                self._active -= 1
                self._cond.notify()
            logger.error("Failed to create pool member %d", serial, exc_info=True)
            raise

        async with self._cond:
            closed = self._closed
            if closed:
                self._active -= 1
            else:
                self._borrowed.add(id(member))
        if closed:
            # closed while the member was being built
            await self._destroy_logged(member)
            raise PoolClosedError("Writer pool is closed")
        logger.debug("Created pool member %d (active=%d)", serial, self._active)
        return member

    async def return_member(self, member: M):
        """Give a borrowed member back to the pool."""
        async with self._cond:
            if id(member) not in self._borrowed:
                raise ValueError(f"{member!r} is not borrowed from this pool")
            self._borrowed.discard(id(member))
            self._active -= 1
            if not self._closed:
                self._idle.append(member)
                self._cond.notify()
                return
        # returned after shutdown
        await self._destroy_logged(member)

    async def invalidate(self, member: M):
        """Destroy a borrowed member and free its slot."""
        async with self._cond:
            if id(member) not in self._borrowed:
                raise ValueError(f"{member!r} is not borrowed from this pool")
            self._borrowed.discard(id(member))
            self._active -= 1
            self._cond.notify()
        await self._destroy(member)

    @asynccontextmanager
    async def member(self):
        """Borrow a member for the duration of the block."""
        m = await self.borrow()
        try:
            yield m
        finally:
            await self.return_member(m)

    async def close(self):
        """Destroy idle members; borrowed ones are destroyed when returned."""
        async with self._cond:
            self._closed = True
            idle, self._idle = self._idle, []
            self._cond.notify_all()
        first_error: Optional[CrawlStoreError] = None
        for m in idle:
            error = await self._destroy_logged(m)
            if first_error is None:
                first_error = error
        logger.info("Writer pool closed (%d idle destroyed, %d still borrowed)", len(idle), self._active)
        if first_error is not None:
            raise first_error

    async def _destroy(self, member: M):
        close = getattr(member, "close", None)
        if close is not None:
            await close()

    async def _destroy_logged(self, member: M) -> Optional[CrawlStoreError]:
        """Destroy a member, logging and returning a store failure instead of raising it."""
        try:
            await self._destroy(member)
        except CrawlStoreError as e:
            logger.error("Failed to close pool member %r", member, exc_info=True)
            return e
        return None

    def __repr__(self):
        return (f"<{type(self).__name__} active={self._active} idle={len(self._idle)} "
                f"max_active={self.max_active} max_wait_ms={self.max_wait_ms}>")

# ------------------ store writer pool ------------------

class StoreWriterPool(WriterPool[StoreWriter]):
    """Pool of StoreWriters sharing one store and one set of parameters."""

    def __init__(self, store: SQLiteStore, params: Optional[StoreParameters] = None,
                 settings: Optional[PoolSettings] = None):
        settings = settings or PoolSettings()
        self.store = store
        self.params = params or StoreParameters()
        self.settings = settings
        super().__init__(self._make_writer, settings.max_active, settings.max_wait_ms)

    async def _make_writer(self, serial: int) -> StoreWriter:
        return await StoreWriter.open(self.store, self.params, serial=serial)
