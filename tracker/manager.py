from dataclasses import dataclass
from functools import partial
from typing import Optional

from config.root_config import TrackerConfig, DebugConfig
from state.gateway import PersistenceGateway
from state.records import TrackerStatus
from tasks.tracker_tasks import start_tick_loop
from tracker.display import render_tracker, render_error, debug_info
from tracker.errors import AlreadyExistsError, PersistenceError, RateLimitedError, TrackerError, TransientRenderError
from tracker.registry import TrackerRegistry
from tracker.surface import MarkerKind, NotificationSurface
from tracker.tracker_state import TrackerState
from utility.rate_limiter import RateLimiter, now_ms
from utility.logger import get_logger
log = get_logger()

START_ACTION = "start_tracker"


@dataclass
class RecoveryContext:
    """What recovery knows about a tracker it is bringing back."""
    display: object = None  # Existing display, None to post a new one
    elapsed_seconds: int = 0
    last_actor_id: Optional[str] = None
    total_events: int = 0


class TrackerLifecycleManager:
    """
    Runs every tracker of the bot: start, tick, crash / reset markers,
    render retries, stop and shutdown.

    All state for one tracker is mutated under that tracker's lock, so a tick
    and a marker event for the same channel never render concurrently.
    """

    def __init__(self, surface: NotificationSurface, store: PersistenceGateway,
                 tracker_config: Optional[TrackerConfig] = None,
                 debug_config: Optional[DebugConfig] = None,
                 registry: Optional[TrackerRegistry] = None,
                 rate_limiter: Optional[RateLimiter] = None,
                 timer_factory=start_tick_loop,
                 clock=now_ms,
                 default_status: TrackerStatus = TrackerStatus.ACTIVE,
                 version: str = "Unknown"):
        self.surface = surface
        self.store = store
        self.config = tracker_config or TrackerConfig()
        self.debug = debug_config or DebugConfig()
        self.registry = registry if registry is not None else TrackerRegistry()
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter(clock)
        self.timer_factory = timer_factory
        self.clock = clock
        self.default_status = default_status
        self.version = version
        self._starting = set()

    @property
    def markers(self):
        return {
            self.config.crash_marker: MarkerKind.CRASH,
            self.config.reset_marker: MarkerKind.RESET,
        }

    def is_active(self, group_id: str, surface_id: str) -> bool:
        return self.registry.contains((str(group_id), str(surface_id)))

    # ──────────────────────────
    # Start
    # ──────────────────────────
    async def start(self, channel, recovery: Optional[RecoveryContext] = None) -> bool:
        """
        Start a tracker in channel.
        Args:
            channel: The channel to post the display in.
            recovery (RecoveryContext): Set when recovering a persisted tracker at boot.
        Returns:
            bool: True if started, False if one is already running here or the display could not be posted.
        Raises:
            RateLimitedError: Too many starts in this channel within the window.
        """
        key = self.surface.channel_key(channel)
        group_id, surface_id = key
        log.info(f"Starting tracker in guild {group_id}, channel {surface_id}{' (recovery)' if recovery else ''}")

        if not self.rate_limiter.check_and_consume(surface_id, START_ACTION,
                                                   self.config.start_rate_limit, self.config.start_rate_window_ms):
            log.warning(f"Rate limit reached for channel {surface_id}")
            raise RateLimitedError(key, START_ACTION)

        if key in self.registry or key in self._starting:
            log.warning(f"Tracker already exists in guild {group_id}, channel {surface_id}")
            return False

        self._starting.add(key)
        try:
            return await self._start(channel, key, recovery)
        finally:
            self._starting.discard(key)

    async def _start(self, channel, key, recovery: Optional[RecoveryContext]) -> bool:
        group_id, surface_id = key
        if recovery is None:
            # A fresh start never inherits a stale row
            await self._delete_record(key)
            state = TrackerState(group_id, surface_id, channel, status=self.default_status)
        else:
            state = TrackerState(group_id, surface_id, channel,
                                 display=recovery.display,
                                 elapsed_seconds=recovery.elapsed_seconds,
                                 last_actor_id=recovery.last_actor_id,
                                 total_events=recovery.total_events,
                                 status=TrackerStatus.RECOVERING)

        try:
            with state.handles as handles:
                if state.display is None:
                    state.display = await self.surface.create_display(channel, self._render(state))
                    await self.surface.add_marker(state.display, self.config.crash_marker)
                    log.debug(f"Created new tracker display {state.display.id} in channel {surface_id}")
                else:
                    log.debug(f"Using existing display {state.display.id} in channel {surface_id}")

                handles.attach_subscription(self.surface.subscribe_to_marker_events(
                    state.display,
                    self.markers,
                    on_event=partial(self._on_marker, state),
                    on_end=partial(self._on_display_gone, state),
                ))
                handles.attach_timer(self.timer_factory(
                    self.config.update_interval_sec,
                    partial(self._tick, state),
                    name=f"tracker-{group_id}-{surface_id}",
                ))
                self.registry.insert(key, state)
        except AlreadyExistsError:
            log.warning(f"Tracker in guild {group_id}, channel {surface_id} was started concurrently")
            return False
        except TrackerError as e:
            log.error(f"Error starting tracker in guild {group_id}, channel {surface_id}: {e}")
            await self._send_start_error(channel, state, e)
            return False

        async with state.lock:
            if recovery is not None:
                # Sync the recovered display with the reconciled time
                state.status = self.default_status
                await self.update_display(state)
            else:
                state.mark_render_ok(self.clock())
                await self._persist(state)

        log.info(f"Tracker started successfully in guild {group_id}, channel {surface_id}")
        return True

    async def start_tracker(self, channel) -> bool:
        return await self.start(channel)

    # ──────────────────────────
    # Ticks and markers
    # ──────────────────────────
    async def tick(self, group_id: str, surface_id: str) -> bool:
        """Advance a tracker by one increment and re-render it."""
        state = self.registry.get((str(group_id), str(surface_id)))
        if state is None:
            return False
        return await self._tick(state)

    async def _tick(self, state: TrackerState) -> bool:
        async with state.lock:
            if state.closed:
                return False
            state.advance(self.config.increment_amount)
            return await self.update_display(state)

    async def on_crash_event(self, group_id: str, surface_id: str, actor_id: str) -> bool:
        state = self.registry.get((str(group_id), str(surface_id)))
        if state is None:
            return False
        return await self._on_marker(state, actor_id, MarkerKind.CRASH)

    async def on_reset_event(self, group_id: str, surface_id: str, actor_id: str) -> bool:
        state = self.registry.get((str(group_id), str(surface_id)))
        if state is None:
            return False
        return await self._on_marker(state, actor_id, MarkerKind.RESET)

    async def _on_marker(self, state: TrackerState, actor_id: str, kind: MarkerKind) -> bool:
        async with state.lock:
            if state.closed:
                return False
            if kind == MarkerKind.CRASH:
                log.info(f"Crash reported by {actor_id} in channel {state.surface_id}")
                state.record_crash(actor_id)
            else:
                log.info(f"Tracker reset by {actor_id} in channel {state.surface_id}")
                state.record_reset(self.config.reset_clears_total_events)
                try:
                    await self.surface.add_marker(state.display, self.config.crash_marker)
                except TrackerError as e:
                    log.warning(f"Failed to re-add crash marker in channel {state.surface_id}: {e}")
            rendered = await self.update_display(state)

        marker = self.config.crash_marker if kind == MarkerKind.CRASH else self.config.reset_marker
        try:
            await self.surface.remove_marker(state.display, marker, actor_id)
        except TrackerError as e:
            log.warning(f"Could not remove marker of {actor_id} in channel {state.surface_id}: {e}")
        return rendered

    async def on_subscription_end(self, group_id: str, surface_id: str) -> bool:
        """The display went away: drop the tracker but keep its record for recovery."""
        state = self.registry.get((str(group_id), str(surface_id)))
        if state is None:
            return False
        await self._on_display_gone(state)
        return True

    async def _on_display_gone(self, state: TrackerState):
        log.info(f"Marker subscription ended for tracker in guild {state.group_id}, channel {state.surface_id}")
        self._release(state)

    # ──────────────────────────
    # Rendering
    # ──────────────────────────
    def _render(self, state: TrackerState, status: Optional[TrackerStatus] = None, footer: Optional[str] = None):
        extra = None
        if self.debug.enabled:
            extra = debug_info(self.debug.log_level, state.retry_count, self.config.max_retries)
        return render_tracker(state, status or state.status, self.config.title, self.version,
                              footer=footer, debug_info=extra)

    async def update_display(self, state: TrackerState) -> bool:
        """
        Render the tracker and persist it. Caller holds state.lock.
        A failed render counts towards max_retries, reaching it tears the
        tracker down with status ERROR and leaves an error display behind.
        """
        try:
            await self.surface.update_display(state.display, self._render(state))
        except TransientRenderError as e:
            retries = state.mark_render_failed()
            log.error(f"Error updating tracker in channel {state.surface_id} ({retries}/{self.config.max_retries}): {e}",
                      exc_info=self.debug.show_stack_traces)
            if retries >= self.config.max_retries:
                await self._fail(state, e)
            return False

        state.mark_render_ok(self.clock())
        await self._persist(state)
        return True

    async def _fail(self, state: TrackerState, error: TransientRenderError):
        log.error(f"Max retries reached, stopping tracker in guild {state.group_id}, channel {state.surface_id}")
        state.status = TrackerStatus.ERROR
        self._release(state)
        await self._delete_record(state.key)
        try:
            await self.surface.update_display(
                state.display,
                render_error(state.elapsed_seconds, error, state.retry_count, self.config.max_retries),
            )
        except TrackerError as e:
            log.error(f"Could not send final error display in channel {state.surface_id}: {e}")

    async def _send_start_error(self, channel, state: TrackerState, error: TrackerError):
        try:
            await self.surface.send_error(channel, render_error(state.elapsed_seconds, error, 0, self.config.max_retries))
        except TrackerError as e:
            log.error(f"Failed to send error display in channel {state.surface_id}: {e}")

    # ──────────────────────────
    # Stop / shutdown
    # ──────────────────────────
    async def stop(self, group_id: str, surface_id: str) -> bool:
        """
        Stop a tracker. Its timer and marker subscription are cancelled
        before anything is awaited, then the display is marked inactive and
        the persisted record is deleted.
        Returns:
            bool: False if no tracker is running here.
        """
        key = (str(group_id), str(surface_id))
        state = self.registry.get(key)
        if state is None:
            log.info(f"No active tracker found in guild {group_id}, channel {surface_id}")
            return False

        log.info(f"Stopping tracker in guild {group_id}, channel {surface_id}")
        self._release(state)

        async with state.lock:
            state.status = TrackerStatus.INACTIVE
            try:
                await self.surface.update_display(state.display, self._render(state))
            except TrackerError as e:
                log.error(f"Error updating message status in channel {surface_id}: {e}")
        await self._delete_record(key)
        log.info(f"Tracker stopped successfully in guild {group_id}, channel {surface_id}")
        return True

    async def stop_tracker(self, group_id: str, surface_id: str) -> bool:
        return await self.stop(group_id, surface_id)

    async def shutdown_all(self, reason: str = "Bot is offline") -> int:
        """
        Mark every tracker OFFLINE on its display and in the store.
        Timers are cancelled but the trackers stay registered.
        Returns:
            int: How many trackers were marked offline on their display.
        """
        log.info(f"Updating all trackers to offline status ({len(self.registry)} trackers)...")
        updated = 0
        for key, state in self.registry.items():
            state.handles.release()
            async with state.lock:
                state.status = TrackerStatus.OFFLINE
                try:
                    await self.surface.update_display(state.display, self._render(state, footer=reason))
                    updated += 1
                except TrackerError as e:
                    log.error(f"Error updating tracker in guild {key[0]}, channel {key[1]}: {e}")
                try:
                    await self.store.save_tracker(state.group_id, state.surface_id, state.to_record(self.clock()))
                except PersistenceError as e:
                    log.error(f"Error saving offline tracker in guild {key[0]}, channel {key[1]}: {e}")
        return updated

    # ──────────────────────────
    # Helpers
    # ──────────────────────────
    def _release(self, state: TrackerState):
        state.handles.release()
        if self.registry.get(state.key) is state:
            self.registry.remove(state.key)

    async def _persist(self, state: TrackerState):
        try:
            await self.store.save_tracker(state.group_id, state.surface_id, state.to_record(self.clock()))
        except PersistenceError as e:
            log.error(f"Error saving tracker in guild {state.group_id}, channel {state.surface_id}: {e}")

    async def _delete_record(self, key):
        try:
            await self.store.delete_tracker(*key)
        except PersistenceError as e:
            log.error(f"Error deleting tracker from database for guild {key[0]}, channel {key[1]}: {e}")
