import asyncio
from typing import Optional

from state.records import TrackerRecord, TrackerStatus
from utility.logger import get_logger
log = get_logger()


class ActiveHandles:
    """
    The timer and marker subscription owned by one tracker.

    release() cancels both exactly once, whichever path gets there first
    (explicit stop, max-retry escalation, display deleted, shutdown).
    Used as a context manager while a tracker is being started: if start
    fails half way the handles acquired so far are released on the way out.
    """

    def __init__(self):
        self.timer = None
        self.subscription = None
        self.released = False

    def attach_timer(self, timer):
        self.timer = timer
        return timer

    def attach_subscription(self, subscription):
        self.subscription = subscription
        return subscription

    def release(self) -> bool:
        if self.released:
            return False
        self.released = True
        if self.timer is not None:
            self.timer.cancel()
        if self.subscription is not None:
            self.subscription.stop()
        return True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.release()
        return False


class TrackerState:
    """Live state of one tracker. Only the lifecycle manager mutates it."""

    def __init__(self, group_id: str, surface_id: str, channel=None, display=None,
                 elapsed_seconds: int = 0, last_actor_id: Optional[str] = None,
                 total_events: int = 0, status: TrackerStatus = TrackerStatus.ACTIVE):
        self.group_id = group_id
        self.surface_id = surface_id
        self.channel = channel
        self.display = display
        self.elapsed_seconds = max(0, int(elapsed_seconds))
        self.last_actor_id = last_actor_id
        self.total_events = max(0, int(total_events))
        self.status = status
        self.retry_count = 0
        self.last_update_ms = 0
        self.handles = ActiveHandles()
        # Serializes tick / marker / render cycles for this key
        self.lock = asyncio.Lock()

    @property
    def key(self):
        return (self.group_id, self.surface_id)

    @property
    def closed(self) -> bool:
        return self.handles.released

    # ──────────────────────────
    # Mutators
    # ──────────────────────────
    def advance(self, amount: int):
        self.elapsed_seconds += max(0, int(amount))

    def record_crash(self, actor_id: str):
        self.elapsed_seconds = 0
        self.last_actor_id = actor_id
        self.total_events += 1

    def record_reset(self, clear_total_events: bool):
        self.elapsed_seconds = 0
        self.last_actor_id = None
        if clear_total_events:
            self.total_events = 0

    def mark_render_ok(self, now_ms: int):
        self.retry_count = 0
        self.last_update_ms = now_ms

    def mark_render_failed(self) -> int:
        self.retry_count += 1
        return self.retry_count

    def to_record(self, now_ms: int, status: Optional[TrackerStatus] = None) -> TrackerRecord:
        return TrackerRecord(
            group_id=self.group_id,
            surface_id=self.surface_id,
            display_handle=str(self.display.id) if self.display is not None else None,
            elapsed_seconds=self.elapsed_seconds,
            last_actor_id=self.last_actor_id,
            last_update_ms=now_ms,
            status=status or self.status,
            total_events=self.total_events,
        )

    def __repr__(self):
        return (f"<TrackerState {self.group_id}/{self.surface_id} status={self.status.value} "
                f"elapsed={self.elapsed_seconds} events={self.total_events} retries={self.retry_count}>")
