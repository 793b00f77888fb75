from __future__ import annotations

import asyncio

from orderpay.utils.locks import KeyedLock
from tests.conftest import run


def test_same_key_is_serialized_and_released():
    locks = KeyedLock()
    trace = []

    async def worker(name):
        async with locks.hold("order-1"):
            trace.append(f"{name}-in")
            await asyncio.sleep(0)
            trace.append(f"{name}-out")

    async def main():
        await asyncio.gather(worker("a"), worker("b"))
        return len(locks)

    assert run(main()) == 0
    assert trace == ["a-in", "a-out", "b-in", "b-out"]


def test_different_keys_do_not_wait():
    locks = KeyedLock()
    trace = []

    async def worker(key):
        async with locks.hold(key):
            trace.append(f"{key}-in")
            await asyncio.sleep(0)
            trace.append(f"{key}-out")

    async def main():
        await asyncio.gather(worker("x"), worker("y"))

    run(main())
    assert trace[:2] == ["x-in", "y-in"]
