import itertools
from types import SimpleNamespace

import pytest

from config.root_config import TrackerConfig, DebugConfig
from state.gateway import PersistenceGateway
from tracker.errors import PersistenceError, TransientRenderError
from tracker.manager import TrackerLifecycleManager
from tracker.surface import MarkerSubscription, NotificationSurface
from utility.rate_limiter import RateLimiter

GUILD_ID = "100"
CHANNEL_ID = "200"


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


class FakeTimer:
    def __init__(self, interval_sec, on_tick, name=""):
        self.interval_sec = interval_sec
        self.on_tick = on_tick
        self.name = name
        self.cancel_calls = 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_calls > 0

    def cancel(self):
        self.cancel_calls += 1

    async def fire(self):
        await self.on_tick()


class FakeDisplay:
    def __init__(self, display_id: int, channel):
        self.id = display_id
        self.channel = channel
        self.content = None
        self.markers = []


class FakeSurface(NotificationSurface):
    """In-memory surface that records every call and can be told to fail."""

    def __init__(self):
        self._ids = itertools.count(5000)
        self.displays = {}
        self.channels = {}
        self.subscriptions = {}
        self.update_calls = []
        self.created = []
        self.errors = []
        self.removed_markers = []
        self.fail_updates = 0      # Fail the next N update_display calls
        self.fail_create = False
        self.gate = None           # asyncio.Event blocking update_display when set
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def render_calls(self) -> int:
        return len(self.update_calls) + len(self.created)

    def add_channel(self, group_id=GUILD_ID, surface_id=CHANNEL_ID):
        channel = make_channel(group_id, surface_id)
        self.channels[(str(group_id), str(surface_id))] = channel
        return channel

    async def create_display(self, channel, content):
        if self.fail_create:
            raise TransientRenderError("Missing Permissions")
        display = FakeDisplay(next(self._ids), channel)
        display.content = content
        self.displays[str(display.id)] = display
        self.created.append(display)
        return display

    async def update_display(self, display, content):
        self.update_calls.append((display, content))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.fail_updates > 0:
                self.fail_updates -= 1
                raise TransientRenderError("503 Service Unavailable")
            display.content = content
        finally:
            self.in_flight -= 1

    async def add_marker(self, display, marker):
        display.markers.append(marker)

    async def remove_marker(self, display, marker, actor_id):
        self.removed_markers.append((display.id, marker, actor_id))

    def subscribe_to_marker_events(self, display, markers, on_event, on_end):
        subscription = MarkerSubscription(
            markers, on_event, on_end,
            unsubscribe=lambda: self.subscriptions.pop(display.id, None),
        )
        self.subscriptions[display.id] = subscription
        return subscription

    async def resolve_channel(self, group_id, surface_id):
        return self.channels.get((str(group_id), str(surface_id)))

    async def fetch_display(self, channel, display_handle):
        return self.displays.get(str(display_handle))

    async def send_error(self, channel, content):
        self.errors.append(content)


class FakeStore(PersistenceGateway):
    def __init__(self):
        self.records = {}
        self.saves = []
        self.deletes = []
        self.fail = False
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.saves) + len(self.deletes)

    def _check(self):
        if self.fail:
            raise PersistenceError("database is locked")

    async def close(self):
        self.closed = True

    async def save_tracker(self, group_id, surface_id, record):
        self.saves.append(record)
        self._check()
        self.records[(group_id, surface_id)] = record

    async def load_tracker(self, group_id, surface_id):
        self._check()
        return self.records.get((group_id, surface_id))

    async def load_all_trackers(self):
        self._check()
        result = {}
        for (group_id, surface_id), record in self.records.items():
            result.setdefault(group_id, {})[surface_id] = record
        return result

    async def delete_tracker(self, group_id, surface_id):
        self.deletes.append((group_id, surface_id))
        self._check()
        self.records.pop((group_id, surface_id), None)


def make_channel(group_id=GUILD_ID, surface_id=CHANNEL_ID):
    return SimpleNamespace(id=int(surface_id), guild=SimpleNamespace(id=int(group_id)))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def surface():
    return FakeSurface()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def timers():
    return []


@pytest.fixture
def make_manager(surface, store, clock, timers):
    def factory(**overrides):
        def timer_factory(interval_sec, on_tick, name=""):
            timer = FakeTimer(interval_sec, on_tick, name)
            timers.append(timer)
            return timer

        tracker_config = overrides.pop("tracker_config", None) or TrackerConfig(
            update_interval_sec=10, increment_amount=10, max_retries=3,
        )
        return TrackerLifecycleManager(
            surface,
            store,
            tracker_config,
            overrides.pop("debug_config", DebugConfig()),
            rate_limiter=RateLimiter(clock),
            timer_factory=timer_factory,
            clock=clock,
            version="1.2.3",
            **overrides,
        )
    return factory


@pytest.fixture
def manager(make_manager):
    return make_manager()


@pytest.fixture
def channel(surface):
    return surface.add_channel()
