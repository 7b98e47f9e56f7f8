import asyncio

import pytest

from infrastructure.locks import InMemoryOrderLock, RedisOrderLock, build_order_lock


@pytest.mark.asyncio
async def test_same_order_is_serialized():
    lock = InMemoryOrderLock()
    trace = []

    async def worker(name):
        async with lock.hold("1"):
            trace.append(f"{name}-in")
            await asyncio.sleep(0.01)
            trace.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert trace in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
    assert lock.active_keys() == 0


@pytest.mark.asyncio
async def test_different_orders_do_not_block():
    lock = InMemoryOrderLock()
    entered = asyncio.Event()

    async def first():
        async with lock.hold("1"):
            await asyncio.wait_for(entered.wait(), timeout=1)

    async def second():
        async with lock.hold("2"):
            entered.set()

    await asyncio.gather(first(), second())
    assert lock.active_keys() == 0


@pytest.mark.asyncio
async def test_lock_released_on_error():
    lock = InMemoryOrderLock()
    with pytest.raises(RuntimeError):
        async with lock.hold("1"):
            raise RuntimeError("boom")

    assert lock.active_keys() == 0
    async with lock.hold("1"):
        assert lock.active_keys() == 1


def test_build_order_lock_without_redis():
    assert isinstance(build_order_lock(redis_url=""), InMemoryOrderLock)


def test_build_order_lock_with_redis():
    lock = build_order_lock(redis_url="redis://localhost:6379/0")
    assert isinstance(lock, RedisOrderLock)
    assert lock._key("42").endswith(":lock:order:42")
