import asyncio
import os
import sys

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from invsync.utils.keyed_lock import KeyedLock

pytestmark = pytest.mark.asyncio


async def test_same_key_runs_one_at_a_time():
    locks = KeyedLock()
    order = []

    async def worker(name):
        async with locks.hold("item-1"):
            order.append(f"{name}-start")
            await asyncio.sleep(0.01)
            order.append(f"{name}-end")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-start", "a-end", "b-start", "b-end"]


async def test_different_keys_do_not_block_each_other():
    locks = KeyedLock()

    async with locks.hold("item-1"):
        assert locks.locked("item-1")
        async with locks.hold("item-2"):
            assert locks.locked("item-2")


async def test_idle_locks_are_released():
    locks = KeyedLock()

    async with locks.hold("item-1"):
        assert len(locks) == 1

    assert len(locks) == 0
    assert not locks.locked("item-1")


async def test_lock_is_released_on_error():
    locks = KeyedLock()

    with pytest.raises(ValueError):
        async with locks.hold("item-1"):
            raise ValueError("boom")

    assert len(locks) == 0
