import asyncio

import pytest

from config.root_config import TrackerConfig, DebugConfig
from state.records import TrackerStatus
from tracker.errors import RateLimitedError

GUILD = "100"
CHANNEL = "200"
KEY = (GUILD, CHANNEL)


def status_of(content) -> str:
    return content.field_value("📊 Status")


@pytest.mark.asyncio
async def test_start_posts_display_and_registers(manager, surface, store, channel, timers):
    assert await manager.start(channel) is True

    assert len(surface.created) == 1
    display = surface.created[0]
    assert display.markers == ["🔄"]
    assert display.id in surface.subscriptions
    assert len(timers) == 1 and timers[0].interval_sec == 10
    assert manager.is_active(GUILD, CHANNEL)
    # Stale rows are cleared before the new tracker is written
    assert store.deletes == [KEY]
    assert store.records[KEY].display_handle == str(display.id)
    assert store.records[KEY].status == TrackerStatus.ACTIVE


@pytest.mark.asyncio
async def test_ticks_accumulate_increment(manager, store, channel):
    await manager.start(channel)
    for _ in range(7):
        assert await manager.tick(GUILD, CHANNEL) is True

    state = manager.registry.get(KEY)
    assert state.elapsed_seconds == 70
    assert store.records[KEY].elapsed_seconds == 70


@pytest.mark.asyncio
async def test_timer_drives_ticks(manager, surface, channel, timers):
    await manager.start(channel)
    await timers[0].fire()
    await timers[0].fire()

    assert manager.registry.get(KEY).elapsed_seconds == 20
    assert "20s" in surface.created[0].content.description


@pytest.mark.asyncio
async def test_crash_event_zeroes_and_counts(manager, surface, store, channel):
    await manager.start(channel)
    await manager.tick(GUILD, CHANNEL)
    await manager.tick(GUILD, CHANNEL)

    await manager.on_crash_event(GUILD, CHANNEL, "42")
    state = manager.registry.get(KEY)
    assert state.elapsed_seconds == 0
    assert state.total_events == 1
    assert state.last_actor_id == "42"

    # Zero elapsed time still counts the crash
    await manager.on_crash_event(GUILD, CHANNEL, "43")
    assert state.elapsed_seconds == 0
    assert state.total_events == 2
    assert store.records[KEY].total_events == 2
    assert store.records[KEY].last_actor_id == "43"
    assert surface.removed_markers[-1] == (surface.created[0].id, "🔄", "43")


@pytest.mark.asyncio
async def test_marker_subscription_routes_events(manager, surface, channel):
    await manager.start(channel)
    display = surface.created[0]
    subscription = surface.subscriptions[display.id]

    await subscription.emit("7", "🔄")
    assert manager.registry.get(KEY).total_events == 1

    # Markers the tracker does not know are ignored
    await subscription.emit("7", "👍")
    assert manager.registry.get(KEY).total_events == 1


@pytest.mark.asyncio
async def test_reset_clears_total_events_by_default(manager, surface, channel):
    await manager.start(channel)
    await manager.on_crash_event(GUILD, CHANNEL, "42")
    await manager.tick(GUILD, CHANNEL)

    await manager.on_reset_event(GUILD, CHANNEL, "43")
    state = manager.registry.get(KEY)
    assert state.elapsed_seconds == 0
    assert state.last_actor_id is None
    assert state.total_events == 0
    # The crash marker is put back after a reset
    assert surface.created[0].markers.count("🔄") == 2
    assert surface.removed_markers[-1][1] == "⏹️"


@pytest.mark.asyncio
async def test_reset_can_keep_total_events(make_manager, channel):
    manager = make_manager(tracker_config=TrackerConfig(reset_clears_total_events=False))
    await manager.start(channel)
    await manager.on_crash_event(GUILD, CHANNEL, "42")
    await manager.on_crash_event(GUILD, CHANNEL, "42")

    await manager.on_reset_event(GUILD, CHANNEL, "43")
    state = manager.registry.get(KEY)
    assert state.elapsed_seconds == 0
    assert state.last_actor_id is None
    assert state.total_events == 2


@pytest.mark.asyncio
async def test_start_twice_returns_false_without_side_effects(manager, surface, store, clock, channel):
    assert await manager.start(channel) is True
    clock.advance(6000)
    renders, persistence = surface.render_calls, store.calls

    assert await manager.start(channel) is False
    assert surface.render_calls == renders
    assert store.calls == persistence
    assert len(manager.registry) == 1


@pytest.mark.asyncio
async def test_two_starts_within_window_are_rate_limited(manager, channel):
    results = []
    for _ in range(2):
        try:
            results.append(await manager.start(channel))
        except RateLimitedError as e:
            results.append(e)

    assert results[0] is True
    assert isinstance(results[1], RateLimitedError)


@pytest.mark.asyncio
async def test_rate_limit_window_expires(manager, clock, channel):
    await manager.start(channel)
    await manager.stop(GUILD, CHANNEL)
    with pytest.raises(RateLimitedError):
        await manager.start(channel)

    clock.advance(5001)
    assert await manager.start(channel) is True


@pytest.mark.asyncio
async def test_render_success_resets_retry_count(manager, surface, channel):
    await manager.start(channel)
    surface.fail_updates = 2
    assert await manager.tick(GUILD, CHANNEL) is False
    assert await manager.tick(GUILD, CHANNEL) is False
    assert manager.registry.get(KEY).retry_count == 2

    assert await manager.tick(GUILD, CHANNEL) is True
    state = manager.registry.get(KEY)
    assert state.retry_count == 0
    # Ticks keep counting while renders fail
    assert state.elapsed_seconds == 30


@pytest.mark.asyncio
async def test_max_retries_tears_tracker_down(manager, surface, store, clock, channel, timers):
    await manager.start(channel)
    state = manager.registry.get(KEY)
    display = surface.created[0]
    surface.fail_updates = 3

    for _ in range(3):
        await manager.tick(GUILD, CHANNEL)

    assert state.status == TrackerStatus.ERROR
    assert not manager.is_active(GUILD, CHANNEL)
    assert timers[0].cancelled
    assert display.id not in surface.subscriptions
    assert KEY not in store.records
    # One final error render after the three failed ones
    assert len(surface.update_calls) == 4
    assert display.content.title == "⚠️ Tracker Error"
    assert "3/3" in display.content.field_value("🔄 Retry Count")

    # No tick runs on a torn down tracker
    await timers[0].fire()
    assert len(surface.update_calls) == 4

    clock.advance(6000)
    assert await manager.start(channel) is True


@pytest.mark.asyncio
async def test_final_error_render_failure_is_swallowed(manager, surface, channel):
    await manager.start(channel)
    surface.fail_updates = 4

    for _ in range(3):
        await manager.tick(GUILD, CHANNEL)

    assert not manager.is_active(GUILD, CHANNEL)
    assert len(surface.update_calls) == 4


@pytest.mark.asyncio
async def test_persistence_failure_keeps_tracker_running(manager, store, channel):
    await manager.start(channel)
    store.fail = True

    assert await manager.tick(GUILD, CHANNEL) is True
    state = manager.registry.get(KEY)
    assert state.retry_count == 0
    assert state.status == TrackerStatus.ACTIVE
    assert manager.is_active(GUILD, CHANNEL)


@pytest.mark.asyncio
async def test_start_with_persistence_down_still_starts(manager, store, channel):
    store.fail = True
    assert await manager.start(channel) is True


@pytest.mark.asyncio
async def test_stop_unknown_key_is_noop(manager, surface, store):
    assert await manager.stop(GUILD, CHANNEL) is False
    assert store.calls == 0
    assert surface.render_calls == 0


@pytest.mark.asyncio
async def test_stop_releases_and_deletes(manager, surface, store, channel, timers):
    await manager.start(channel)
    display = surface.created[0]

    assert await manager.stop(GUILD, CHANNEL) is True
    assert timers[0].cancel_calls == 1
    assert display.id not in surface.subscriptions
    assert not manager.is_active(GUILD, CHANNEL)
    assert len(manager.registry) == 0
    assert status_of(display.content) == "```Inactive```"
    assert KEY not in store.records

    renders = surface.render_calls
    assert await manager.tick(GUILD, CHANNEL) is False
    await timers[0].fire()
    assert surface.render_calls == renders

    # Second stop is a no-op
    assert await manager.stop(GUILD, CHANNEL) is False
    assert timers[0].cancel_calls == 1


@pytest.mark.asyncio
async def test_display_deleted_ends_tracker_but_keeps_record(manager, surface, store, channel, timers):
    await manager.start(channel)
    display = surface.created[0]

    await surface.subscriptions[display.id].end()

    assert not manager.is_active(GUILD, CHANNEL)
    assert timers[0].cancelled
    assert KEY in store.records


@pytest.mark.asyncio
async def test_start_failure_posts_error_and_registers_nothing(manager, surface, store, channel, timers):
    surface.fail_create = True

    assert await manager.start(channel) is False
    assert len(manager.registry) == 0
    assert timers == []
    assert len(surface.errors) == 1
    assert surface.errors[0].title == "⚠️ Tracker Error"
    assert KEY not in store.records


@pytest.mark.asyncio
async def test_tick_and_marker_never_render_concurrently(manager, surface, channel):
    await manager.start(channel)
    surface.gate = asyncio.Event()

    tick = asyncio.create_task(manager.tick(GUILD, CHANNEL))
    crash = asyncio.create_task(manager.on_crash_event(GUILD, CHANNEL, "42"))
    second_tick = asyncio.create_task(manager.tick(GUILD, CHANNEL))
    await asyncio.sleep(0.01)
    assert surface.in_flight == 1

    surface.gate.set()
    await asyncio.gather(tick, crash, second_tick)

    assert surface.max_in_flight == 1
    state = manager.registry.get(KEY)
    # tick, crash, tick applied in order
    assert state.elapsed_seconds == 10
    assert state.total_events == 1


@pytest.mark.asyncio
async def test_shutdown_marks_offline_and_keeps_entries(manager, surface, store, channel, timers):
    other = surface.add_channel("100", "201")
    await manager.start(channel)
    await manager.start(other)
    await manager.on_crash_event(GUILD, CHANNEL, "42")

    updated = await manager.shutdown_all("Maintenance")

    assert updated == 2
    assert len(manager.registry) == 2
    assert all(timer.cancelled for timer in timers)
    for display in surface.created:
        assert status_of(display.content) == "```Offline```"
        assert display.content.footer == "Maintenance"
    assert store.records[KEY].status == TrackerStatus.OFFLINE
    assert store.records[KEY].total_events == 1
    assert store.records[("100", "201")].status == TrackerStatus.OFFLINE


@pytest.mark.asyncio
async def test_shutdown_failures_are_logged_only(manager, surface, store, channel):
    await manager.start(channel)
    surface.fail_updates = 1
    store.fail = True

    assert await manager.shutdown_all("Bot is offline") == 0
    assert len(manager.registry) == 1


@pytest.mark.asyncio
async def test_misconfigured_status_is_shown(make_manager, surface, channel):
    manager = make_manager(default_status=TrackerStatus.MISCONFIGURED)
    await manager.start(channel)
    await manager.tick(GUILD, CHANNEL)

    content = surface.created[0].content
    assert status_of(content) == "```Misconfigured```"
    assert content.footer == "Using default configuration"


@pytest.mark.asyncio
async def test_debug_mode_adds_debug_field(make_manager, surface, channel):
    manager = make_manager(debug_config=DebugConfig(enabled=True, log_level="debug"))
    await manager.start(channel)
    await manager.tick(GUILD, CHANNEL)

    debug = surface.created[0].content.field_value("🔧 Debug Info")
    assert "Retry Count: 0/3" in debug


@pytest.mark.asyncio
async def test_managers_do_not_share_trackers(make_manager, channel):
    first = make_manager()
    second = make_manager()

    assert await first.start(channel) is True
    assert await second.start(channel) is True
    assert first.registry is not second.registry


@pytest.mark.asyncio
async def test_subscription_end_by_key(manager, store, channel, timers):
    await manager.start(channel)

    assert await manager.on_subscription_end(GUILD, CHANNEL) is True
    assert await manager.on_subscription_end(GUILD, CHANNEL) is False
    assert timers[0].cancel_calls == 1
    assert KEY in store.records
