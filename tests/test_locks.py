import asyncio

import pytest

from rehearsal.core.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_runs_in_request_order():
    locks = KeyedLock()
    order = []

    async def worker(name, delay):
        async with locks.hold("sess-1"):
            order.append(f"{name}-start")
            await asyncio.sleep(delay)
            order.append(f"{name}-end")

    await asyncio.gather(worker("a", 0.03), worker("b", 0.0), worker("c", 0.01))

    assert order == ["a-start", "a-end", "b-start", "b-end", "c-start", "c-end"]


@pytest.mark.asyncio
async def test_different_keys_do_not_block_each_other():
    locks = KeyedLock()
    release = asyncio.Event()
    entered = asyncio.Event()

    async def holder():
        async with locks.hold("sess-1"):
            await release.wait()

    async def other():
        async with locks.hold("sess-2"):
            entered.set()

    task = asyncio.create_task(holder())
    await asyncio.sleep(0)
    await asyncio.wait_for(other(), timeout=1.0)
    assert entered.is_set()

    release.set()
    await task


@pytest.mark.asyncio
async def test_idle_keys_are_dropped():
    locks = KeyedLock()
    async with locks.hold("sess-1"):
        assert len(locks) == 1
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_released_when_body_raises():
    locks = KeyedLock()
    with pytest.raises(RuntimeError):
        async with locks.hold("sess-1"):
            raise RuntimeError("boom")

    async with locks.hold("sess-1"):
        pass
    assert len(locks) == 0
