import asyncio

import pytest

from tabflow.adapters import PlatformError
from tabflow.config_store import AUTO_RELEASE_KEY
from tabflow.core.release_queue import DelayedReleaseQueue

from conftest import open_tabs


def _holding_group(platform, config, count: int = 4):
    ids = open_tabs(platform, count)
    group = platform.create_group(ids, title=config.holding_group_title, collapsed=True)
    return ids, group


def test_first_reactivation_wins(platform, store, config, clock) -> None:
    queue = DelayedReleaseQueue(platform, store, config, clock)
    start = clock.now

    assert queue.enqueue(5) is True
    clock.advance(seconds=3)
    assert queue.enqueue(5) is False

    assert queue.enqueued_at(5) == start
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_release_waits_for_delay_then_recollapses(platform, store, config, clock) -> None:
    ids, group = _holding_group(platform, config)
    await platform.activate(ids[0])
    await platform.update_group(group.id, collapsed=False)
    queue = DelayedReleaseQueue(platform, store, config, clock)
    queue.enqueue(ids[0])

    clock.advance(seconds=5)
    assert await queue.drain() == []
    assert ids[0] in queue

    clock.advance(seconds=5)
    assert await queue.drain() == [ids[0]]

    assert platform.tab(ids[0]).group_id is None
    assert ids[0] not in queue
    live = await platform.get_group(group.id)
    assert live.collapsed is True


@pytest.mark.asyncio
async def test_tab_no_longer_active_is_dropped(platform, store, config, clock) -> None:
    ids, group = _holding_group(platform, config)
    await platform.activate(ids[0])
    queue = DelayedReleaseQueue(platform, store, config, clock)
    queue.enqueue(ids[0])
    await platform.activate(ids[1])

    clock.advance(seconds=11)
    assert await queue.drain() == []

    assert platform.tab(ids[0]).group_id == group.id
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_renamed_group_is_left_alone(platform, store, config, clock) -> None:
    ids, group = _holding_group(platform, config)
    await platform.activate(ids[0])
    await platform.update_group(group.id, title="Research")
    queue = DelayedReleaseQueue(platform, store, config, clock)
    queue.enqueue(ids[0])

    clock.advance(seconds=11)
    assert await queue.drain() == []
    assert platform.tab(ids[0]).group_id == group.id
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_failed_release_is_not_retried(platform, store, config, clock) -> None:
    ids, group = _holding_group(platform, config)
    await platform.activate(ids[0])
    platform.fail_on("ungroup_tabs", PlatformError("No tab with id"))
    queue = DelayedReleaseQueue(platform, store, config, clock)
    queue.enqueue(ids[0])

    clock.advance(seconds=11)
    assert await queue.drain() == []
    assert len(queue) == 0
    assert queue.in_flight is False


@pytest.mark.asyncio
async def test_auto_release_disabled_drops_entries(platform, store, config, clock) -> None:
    ids, group = _holding_group(platform, config)
    await platform.activate(ids[0])
    await store.set(AUTO_RELEASE_KEY, False)
    queue = DelayedReleaseQueue(platform, store, config, clock)
    queue.enqueue(ids[0])

    clock.advance(seconds=11)
    assert await queue.drain() == []
    assert platform.tab(ids[0]).group_id == group.id
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_drain_is_not_reentrant(platform, store, config, clock) -> None:
    ids, _ = _holding_group(platform, config)
    await platform.activate(ids[0])
    queue = DelayedReleaseQueue(platform, store, config, clock)
    queue.enqueue(ids[0])
    clock.advance(seconds=11)
    gate = platform.block("get_tab")

    first = asyncio.create_task(queue.drain())
    await asyncio.sleep(0)
    assert queue.in_flight is True
    assert await queue.drain() == []

    gate.set()
    assert await first == [ids[0]]
    assert queue.in_flight is False


@pytest.mark.asyncio
async def test_membership_check(platform, store, config, clock) -> None:
    ids, _ = _holding_group(platform, config, count=2)
    loose = platform.open_tab().id
    queue = DelayedReleaseQueue(platform, store, config, clock)

    assert await queue.is_holding_member(ids[0]) is True
    assert await queue.is_holding_member(loose) is False
    assert await queue.is_holding_member(404) is False


@pytest.mark.asyncio
async def test_drain_interrupted_by_clear_keeps_new_entries(platform, store, config, clock) -> None:
    ids, _ = _holding_group(platform, config)
    await platform.activate(ids[0])
    queue = DelayedReleaseQueue(platform, store, config, clock)
    queue.enqueue(ids[0])
    clock.advance(seconds=11)
    gate = platform.block("get_tab")

    stale = asyncio.create_task(queue.drain())
    await asyncio.sleep(0)
    assert queue.in_flight is True

    queue.clear()
    assert queue.in_flight is False
    queue.enqueue(ids[0])
    requeued_at = queue.enqueued_at(ids[0])

    gate.set()
    await stale

    assert ids[0] in queue
    assert queue.enqueued_at(ids[0]) == requeued_at
    assert queue.in_flight is False
