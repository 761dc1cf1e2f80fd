import datetime as dt

import pytest

from tabflow.config_store import (
    HOLDING_GROUP_KEY,
    LAST_CLOSE_KEY,
    SESSION_CLEAN_KEY,
    SESSION_READY_KEY,
    SESSION_START_KEY,
    THRESHOLD_MINUTES_KEY,
)
from tabflow.core.orchestrator import ConsolidationOutcome
from tabflow.notifiers import StatusKind
from tabflow.service import AUTO_CHECKER_TIMER, RECONCILE_TIMER, RELEASE_TIMER, TabEngine

from conftest import open_tabs


@pytest.mark.asyncio
async def test_startup_rebuilds_state_and_schedules_timers(platform, store, config, clock) -> None:
    members = open_tabs(platform, 3)
    loose = open_tabs(platform, 2)
    group = platform.create_group(members, title="Inactive Tabs", collapsed=True)
    engine = TabEngine(platform, store, config, clock=clock)

    await engine.startup()

    assert await store.get(HOLDING_GROUP_KEY) == group.id
    assert await store.get(SESSION_READY_KEY) is True
    assert await store.get(SESSION_START_KEY) == int(clock.now.timestamp() * 1000)
    assert engine.scheduler.names() == sorted([AUTO_CHECKER_TIMER, RECONCILE_TIMER, RELEASE_TIMER])
    assert len(engine.tracker) == 5
    assert engine.tracker.get(members[0]).last_accessed < clock.now - dt.timedelta(days=300)
    assert engine.tracker.get(loose[0]).last_accessed == clock.now

    await engine.shutdown()


@pytest.mark.asyncio
async def test_restart_does_not_regroup_held_tabs(platform, store, config, clock) -> None:
    members = open_tabs(platform, 6)
    open_tabs(platform, 2)
    group = platform.create_group(members, title="Inactive Tabs", collapsed=True)
    await store.set(HOLDING_GROUP_KEY, group.id)
    engine = TabEngine(platform, store, config, clock=clock)
    await engine.startup()

    clock.advance(minutes=31)
    count = await engine.control_loop.sample()
    result = await engine.group_now(30)

    assert count == 2
    assert result.outcome is ConsolidationOutcome.NOT_ENOUGH_CANDIDATES
    assert platform.mutations() == []

    await engine.shutdown()


@pytest.mark.asyncio
async def test_activation_of_held_tab_is_released_after_delay(platform, store, config, clock) -> None:
    members = open_tabs(platform, 4)
    group = platform.create_group(members, title="Inactive Tabs", collapsed=True)
    engine = TabEngine(platform, store, config, clock=clock)
    await engine.startup()
    start = clock.now

    await platform.activate(members[1])
    clock.advance(seconds=4)
    await platform.activate(members[1])

    assert engine.release_queue.enqueued_at(members[1]) == start
    assert engine.tracker.get(members[1]).is_active is True

    clock.advance(seconds=6)
    await engine.process_releases()

    assert platform.tab(members[1]).group_id is None
    assert (await platform.get_group(group.id)).collapsed is True
    await engine.shutdown()


@pytest.mark.asyncio
async def test_activation_of_loose_tab_is_not_queued(platform, store, config, clock) -> None:
    ids = open_tabs(platform, 2)
    engine = TabEngine(platform, store, config, clock=clock)

    await platform.activate(ids[0])

    assert ids[0] not in engine.release_queue
    assert engine.tracker.get(ids[0]).is_active is True


@pytest.mark.asyncio
async def test_tab_events_update_tracker_and_queue(platform, store, config, clock) -> None:
    members = open_tabs(platform, 3)
    platform.create_group(members, title="Inactive Tabs")
    engine = TabEngine(platform, store, config, clock=clock)
    await engine.tracker.bootstrap()

    await platform.activate(members[0])
    await platform.activate(members[1])
    engine.on_tab_updated(members[0], active=False)
    assert members[0] not in engine.release_queue
    assert engine.tracker.get(members[0]).is_active is False

    clock.advance(minutes=3)
    platform.navigate(members[2], "https://example.com/next")
    assert engine.tracker.get(members[2]).last_accessed == clock.now

    platform.close_tab(members[1])
    assert members[1] not in engine.release_queue
    assert members[1] not in engine.tracker


@pytest.mark.asyncio
async def test_removing_holding_group_clears_pointer(platform, store, config, clock) -> None:
    members = open_tabs(platform, 2)
    group = platform.create_group(members, title="Inactive Tabs")
    await store.set(HOLDING_GROUP_KEY, group.id)
    engine = TabEngine(platform, store, config, clock=clock)

    await platform.remove_group(group.id)

    assert await store.get(HOLDING_GROUP_KEY) is None


@pytest.mark.asyncio
async def test_reconcile_drops_closed_tabs(platform, store, config, clock) -> None:
    ids = open_tabs(platform, 3)
    engine = TabEngine(platform, store, config, clock=clock)
    await engine.tracker.bootstrap()
    platform.set_listener(None)
    platform.close_tab(ids[0])

    await engine.reconcile()

    assert ids[0] not in engine.tracker
    assert len(engine.tracker) == 2


@pytest.mark.asyncio
async def test_commands(platform, store, config, clock) -> None:
    open_tabs(platform, 12)
    await store.set(THRESHOLD_MINUTES_KEY, 20)
    engine = TabEngine(platform, store, config, clock=clock)
    await engine.startup()

    status = await engine.handle_command({"type": "GET_STATUS"})
    assert status == {
        "running": False,
        "configured_threshold_minutes": 20,
        "auto_consolidate": True,
        "countdown_end_time": None,
    }

    await engine.auto_check()
    status = await engine.handle_command({"type": "GET_STATUS"})
    assert status["running"] is True
    assert status["configured_threshold_minutes"] == 20

    assert await engine.handle_command({"type": "STOP"}) == {"success": True}
    assert engine.control_loop.running is False
    assert engine.events.kinds()[-1] is StatusKind.STOPPED

    clock.advance(minutes=21)
    grouped = await engine.handle_command({"type": "GROUP_NOW"})
    assert grouped["outcome"] == "completed"
    assert grouped["grouped"] == 12

    with pytest.raises(ValueError):
        await engine.handle_command({"type": "GROUP_NOW", "thresholdMinutes": -5})

    assert await engine.handle_command({"type": "NOPE"}) is None
    await engine.shutdown()


@pytest.mark.asyncio
async def test_force_reset_clears_guards_and_queue(platform, store, config, clock) -> None:
    members = open_tabs(platform, 3)
    platform.create_group(members, title="Inactive Tabs")
    engine = TabEngine(platform, store, config, clock=clock)
    await engine.startup()
    await platform.activate(members[0])
    engine.control_loop.start_countdown(30)
    engine.orchestrator._in_flight = True

    clock.advance(minutes=1)
    response = await engine.handle_command({"type": "FORCE_RESET"})

    assert response == {"success": True}
    assert engine.orchestrator.in_flight is False
    assert engine.release_queue.in_flight is False
    assert len(engine.release_queue) == 0
    assert engine.control_loop.running is False
    assert engine.events.kinds()[-1] is StatusKind.STOPPED
    assert await store.get(SESSION_START_KEY) == int(clock.now.timestamp() * 1000)
    assert engine.tracker.get(members[0]).is_active is False
    await engine.shutdown()


@pytest.mark.asyncio
async def test_suspend_clears_memory_and_marks_session(platform, store, config, clock) -> None:
    open_tabs(platform, 3)
    engine = TabEngine(platform, store, config, clock=clock)
    await engine.startup()

    await engine.suspend()

    assert len(engine.tracker) == 0
    assert engine.scheduler.names() == []
    assert await store.get(SESSION_CLEAN_KEY) is True
    assert await store.get(LAST_CLOSE_KEY) == int(clock.now.timestamp() * 1000)
    await engine.shutdown()


@pytest.mark.asyncio
async def test_update_settings_validates_values(platform, store, config, clock) -> None:
    engine = TabEngine(platform, store, config, clock=clock)

    settings = await engine.update_settings(threshold_minutes=15, auto_release=False)
    assert settings.threshold_minutes == 15
    assert settings.auto_release is False
    assert await store.get(THRESHOLD_MINUTES_KEY) == 15

    with pytest.raises(ValueError):
        await engine.update_settings(min_consolidation_count=0)
    with pytest.raises(ValueError):
        await engine.update_settings(colour="blue")


@pytest.mark.asyncio
async def test_group_now_rejects_non_positive_minutes(platform, store, config, clock) -> None:
    open_tabs(platform, 6)
    engine = TabEngine(platform, store, config, clock=clock)
    await engine.startup()

    with pytest.raises(ValueError):
        await engine.handle_command({"type": "GROUP_NOW", "thresholdMinutes": -5})
    with pytest.raises(ValueError):
        await engine.group_now("soon")

    assert platform.mutations() == []
    assert engine.orchestrator.in_flight is False

    result = await engine.handle_command({"type": "GROUP_NOW", "thresholdMinutes": 0})
    assert result["outcome"] == "not_enough_candidates"
    assert platform.mutations() == []
    await engine.shutdown()
