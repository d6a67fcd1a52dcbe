import asyncio

import pytest

from mailpilot.locks import UserLocks


@pytest.mark.asyncio
async def test_same_user_is_serialized():
    locks = UserLocks()
    events = []

    async def job(name):
        async with locks.hold("u1"):
            events.append(f"{name}-start")
            await asyncio.sleep(0.01)
            events.append(f"{name}-end")

    await asyncio.gather(job("a"), job("b"))

    assert events == ["a-start", "a-end", "b-start", "b-end"]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_users_run_concurrently():
    locks = UserLocks()
    both_inside = asyncio.Event()
    inside = set()

    async def job(user_id):
        async with locks.hold(user_id):
            inside.add(user_id)
            if len(inside) == 2:
                both_inside.set()
            await asyncio.wait_for(both_inside.wait(), timeout=1)

    await asyncio.gather(job("u1"), job("u2"))

    assert inside == {"u1", "u2"}


@pytest.mark.asyncio
async def test_lock_released_on_error():
    locks = UserLocks()

    with pytest.raises(RuntimeError):
        async with locks.hold("u1"):
            assert locks.locked("u1")
            raise RuntimeError("boom")

    assert not locks.locked("u1")
    assert len(locks) == 0
