"""Tests for the per-position lock registry."""

import asyncio

import pytest

from wallet.services.locks import PositionLockRegistry, new_position_key, position_key


def test_keys():
    assert position_key(7) == "position:7"
    assert new_position_key(1, "btc", "cryptocurrency") == "slot:1:cryptocurrency:btc"


@pytest.mark.asyncio
async def test_same_key_is_exclusive():
    locks = PositionLockRegistry()
    events = []

    async def worker(name):
        async with locks.hold("position:1"):
            events.append(f"{name} in")
            await asyncio.sleep(0.01)
            events.append(f"{name} out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events in (
        ["a in", "a out", "b in", "b out"],
        ["b in", "b out", "a in", "a out"],
    )


@pytest.mark.asyncio
async def test_different_keys_run_together():
    locks = PositionLockRegistry()
    inside = 0
    peak = 0

    async def worker(key):
        nonlocal inside, peak
        async with locks.hold(key):
            inside += 1
            peak = max(peak, inside)
            await asyncio.sleep(0.01)
            inside -= 1

    await asyncio.gather(worker("position:1"), worker("position:2"))

    assert peak == 2


@pytest.mark.asyncio
async def test_overlapping_sets_do_not_deadlock():
    locks = PositionLockRegistry()

    async def worker(*keys):
        for _ in range(20):
            async with locks.hold(*keys):
                await asyncio.sleep(0)

    await asyncio.wait_for(
        asyncio.gather(worker("position:1", "position:2"), worker("position:2", "position:1")),
        timeout=5,
    )


@pytest.mark.asyncio
async def test_none_and_duplicates_ignored():
    locks = PositionLockRegistry()

    async with locks.hold(None, "position:1", "position:1"):
        assert len(locks) == 1

    async with locks.hold(None):
        assert len(locks) == 0


@pytest.mark.asyncio
async def test_unused_entries_dropped():
    locks = PositionLockRegistry()

    with pytest.raises(RuntimeError):
        async with locks.hold("position:1", "position:2"):
            raise RuntimeError("boom")

    assert len(locks) == 0
    async with locks.hold("position:1"):
        pass
