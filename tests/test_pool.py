import asyncio

import pytest

from crawlstore.config import PoolSettings
from crawlstore.errors import ConfigurationError, PoolClosedError, PoolExhaustedError, StoreIOError
from crawlstore.pool import StoreWriterPool, WriterPool
from crawlstore.writer import StoreWriter


class _Member:
    def __init__(self, serial):
        self.serial = serial
        self.closed = False

    async def close(self):
        self.closed = True


async def _factory(serial):
    return _Member(serial)


def test_new_pool_is_empty():
    pool = WriterPool(_factory, max_active=10, max_wait_ms=20)
    assert pool.num_active == 0
    assert pool.num_idle == 0
    assert pool.serial_no == 0


@pytest.mark.parametrize("max_active,max_wait_ms", [(0, 10), (-1, 10), (1, -5)])
def test_misconfigured_pool_is_rejected(max_active, max_wait_ms):
    with pytest.raises(ConfigurationError):
        WriterPool(_factory, max_active=max_active, max_wait_ms=max_wait_ms)


def test_borrow_creates_lazily_and_reuses(run):
    async def scenario():
        pool = WriterPool(_factory, max_active=2, max_wait_ms=50)
        first = await pool.borrow()
        assert (pool.num_active, pool.num_idle, pool.serial_no) == (1, 0, 1)
        await pool.return_member(first)
        assert (pool.num_active, pool.num_idle) == (0, 1)
        again = await pool.borrow()
        assert again is first
        assert pool.serial_no == 1
        await pool.return_member(again)

    run(scenario())


def test_exhausted_pool_fails_after_wait(run):
    async def scenario():
        pool = WriterPool(_factory, max_active=1, max_wait_ms=50)
        held = await pool.borrow()
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(PoolExhaustedError):
            await pool.borrow()
        assert loop.time() - started >= 0.04
        assert pool.num_active == 1
        await pool.return_member(held)

    run(scenario())


def test_waiting_borrower_gets_returned_member(run):
    async def scenario():
        pool = WriterPool(_factory, max_active=1, max_wait_ms=2000)
        held = await pool.borrow()

        async def give_back():
            await asyncio.sleep(0.05)
            await pool.return_member(held)

        returner = asyncio.create_task(give_back())
        got = await pool.borrow()
        await returner
        assert got is held
        await pool.return_member(got)

    run(scenario())


def test_members_are_never_shared(run):
    max_active = 3
    in_use = set()
    violations = []

    async def scenario():
        pool = WriterPool(_factory, max_active=max_active, max_wait_ms=5000)

        async def worker(i):
            for _ in range(5):
                member = await pool.borrow()
                if member in in_use:
                    violations.append(member)
                in_use.add(member)
                if pool.num_active + pool.num_idle > max_active:
                    violations.append("bound")
                await asyncio.sleep(0.001 * (i % 3))
                in_use.discard(member)
                await pool.return_member(member)

        await asyncio.gather(*(worker(i) for i in range(12)))
        return pool

    pool = run(scenario())
    assert violations == []
    assert pool.num_active == 0
    assert pool.num_idle <= max_active
    assert pool.serial_no <= max_active


def test_failed_creation_does_not_consume_a_slot(run):
    attempts = []

    async def flaky(serial):
        attempts.append(serial)
        if len(attempts) == 1:
            raise OSError("store unreachable")
        return _Member(serial)

    async def scenario():
        pool = WriterPool(flaky, max_active=1, max_wait_ms=10)
        with pytest.raises(OSError):
            await pool.borrow()
        assert pool.num_active == 0
        member = await pool.borrow()
        assert pool.num_active == 1
        await pool.return_member(member)
        return member

    member = run(scenario())
    assert member.serial == 2
    assert attempts == [1, 2]


def test_return_unknown_member_is_rejected(run):
    async def scenario():
        pool = WriterPool(_factory, max_active=1, max_wait_ms=10)
        member = await pool.borrow()
        await pool.return_member(member)
        with pytest.raises(ValueError):
            await pool.return_member(member)
        with pytest.raises(ValueError):
            await pool.return_member(_Member(99))
        assert (pool.num_active, pool.num_idle) == (0, 1)

    run(scenario())


def test_invalidate_frees_the_slot(run):
    async def scenario():
        pool = WriterPool(_factory, max_active=1, max_wait_ms=10)
        member = await pool.borrow()
        await pool.invalidate(member)
        assert member.closed
        assert (pool.num_active, pool.num_idle) == (0, 0)
        fresh = await pool.borrow()
        assert fresh is not member
        await pool.return_member(fresh)

    run(scenario())


def test_member_context_manager_returns_on_error(run):
    async def scenario():
        pool = WriterPool(_factory, max_active=1, max_wait_ms=10)
        with pytest.raises(RuntimeError):
            async with pool.member():
                assert pool.num_active == 1
                raise RuntimeError("write failed")
        assert (pool.num_active, pool.num_idle) == (0, 1)

    run(scenario())


def test_close_destroys_members(run):
    async def scenario():
        pool = WriterPool(_factory, max_active=2, max_wait_ms=10)
        idle = await pool.borrow()
        borrowed = await pool.borrow()
        await pool.return_member(idle)
        await pool.close()
        assert idle.closed
        assert not borrowed.closed
        with pytest.raises(PoolClosedError):
            await pool.borrow()
        await pool.return_member(borrowed)
        assert borrowed.closed
        assert (pool.num_active, pool.num_idle) == (0, 0)

    run(scenario())


def test_store_writer_pool(store, params, run):
    async def scenario():
        pool = StoreWriterPool(store, params, PoolSettings(max_active=2, max_wait_ms=10))
        a = await pool.borrow()
        b = await pool.borrow()
        assert isinstance(a, StoreWriter) and a is not b
        assert {a.serial, b.serial} == {1, 2}
        with pytest.raises(PoolExhaustedError):
            await pool.borrow()
        await pool.return_member(a)
        await pool.return_member(b)
        await pool.close()
        assert a.url_table.closed and a.content_table.closed

    run(scenario())


class _BrokenMember(_Member):
    async def close(self):
        raise StoreIOError("close failed")


def test_close_keeps_going_when_a_member_fails_to_close(run):
    async def broken_first(serial):
        return _BrokenMember(serial) if serial == 1 else _Member(serial)

    async def scenario():
        pool = WriterPool(broken_first, max_active=3, max_wait_ms=10)
        members = [await pool.borrow() for _ in range(3)]
        for m in members:
            await pool.return_member(m)
        with pytest.raises(StoreIOError):
            await pool.close()
        return pool, members

    pool, members = run(scenario())
    assert [(m.serial, m.closed) for m in members] == [(1, False), (2, True), (3, True)]
    assert (pool.num_active, pool.num_idle) == (0, 0)


def test_return_after_close_does_not_raise_on_failed_close(run):
    async def broken(serial):
        return _BrokenMember(serial)

    async def scenario():
        pool = WriterPool(broken, max_active=1, max_wait_ms=10)
        member = await pool.borrow()
        await pool.close()
        await pool.return_member(member)
        return pool

    pool = run(scenario())
    assert (pool.num_active, pool.num_idle) == (0, 0)


def test_member_built_during_close_is_destroyed(run):
    release = None
    built = []

    async def slow(serial):
        await release.wait()
        member = _Member(serial)
        built.append(member)
        return member

    async def scenario():
        nonlocal release
        release = asyncio.Event()
        pool = WriterPool(slow, max_active=1, max_wait_ms=1000)
        borrower = asyncio.create_task(pool.borrow())
        while pool.num_active == 0:
            await asyncio.sleep(0)
        await pool.close()
        release.set()
        with pytest.raises(PoolClosedError):
            await borrower
        return pool

    pool = run(scenario())
    assert len(built) == 1 and built[0].closed
    assert (pool.num_active, pool.num_idle) == (0, 0)
