from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from utility.logger import get_logger
log = get_logger()


class MarkerKind(Enum):
    CRASH = "crash"
    RESET = "reset"


OnMarkerEvent = Callable[[str, MarkerKind], Awaitable[None]]
OnMarkerEnd = Callable[[], Awaitable[None]]


class MarkerSubscription:
    """
    A live subscription to marker events on one display.

    stop() detaches silently and is what the tracker calls when it tears
    itself down. end() is called by the surface when the display goes away,
    it detaches and then notifies the owner through on_end.
    """

    def __init__(self, markers: Dict[str, MarkerKind], on_event: OnMarkerEvent, on_end: OnMarkerEnd,
                 unsubscribe: Optional[Callable[[], None]] = None):
        self.markers = markers
        self.on_event = on_event
        self.on_end = on_end
        self._unsubscribe = unsubscribe
        self.channel_id = None
        self.active = True

    def accepts(self, marker: str) -> bool:
        return self.active and marker in self.markers

    async def emit(self, actor_id: str, marker: str):
        if not self.accepts(marker):
            return
        await self.on_event(actor_id, self.markers[marker])

    def stop(self):
        if not self.active:
            return
        self.active = False
        if self._unsubscribe is not None:
            self._unsubscribe()

    async def end(self):
        if not self.active:
            return
        self.stop()
        await self.on_end()


class NotificationSurface(ABC):
    """
    Where trackers live: a channel holds displays, a display carries markers
    users can add. Every method that talks to the platform is awaitable.
    Implementations raise TransientRenderError from update_display.
    """

    @abstractmethod
    async def create_display(self, channel, content):
        """Post a new display in channel and return it."""

    @abstractmethod
    async def update_display(self, display, content):
        """Re-render display. Raises TransientRenderError on failure."""

    @abstractmethod
    async def add_marker(self, display, marker: str):
        """Add a marker to the display so users can click it."""

    @abstractmethod
    async def remove_marker(self, display, marker: str, actor_id: str):
        """Remove one user's marker from the display, if permitted."""

    @abstractmethod
    def subscribe_to_marker_events(self, display, markers: Dict[str, MarkerKind],
                                   on_event: OnMarkerEvent, on_end: OnMarkerEnd) -> MarkerSubscription:
        """Route marker events for display to on_event until stopped or ended."""

    @abstractmethod
    async def resolve_channel(self, group_id: str, surface_id: str):
        """Return the channel for these ids, or None if it no longer exists."""

    @abstractmethod
    async def fetch_display(self, channel, display_handle: str):
        """Return the existing display for this handle, or None if it is gone."""

    @abstractmethod
    async def send_error(self, channel, content):
        """Post a standalone error display in channel."""

    @staticmethod
    def channel_key(channel):
        """(group_id, surface_id) for a channel object with .id and .guild.id."""
        return (str(channel.guild.id), str(channel.id))

    @staticmethod
    def display_handle(display) -> str:
        return str(display.id)
