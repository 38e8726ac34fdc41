from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class TrackerStatus(Enum):
    ACTIVE = "Active"
    MISCONFIGURED = "Misconfigured"
    INACTIVE = "Inactive"
    ERROR = "Error"
    OFFLINE = "Offline"
    RECOVERING = "Recovering"

    @property
    def color(self) -> int:
        return STATUS_COLORS.get(self, STATUS_COLORS[TrackerStatus.ERROR])

    @property
    def footer(self) -> str:
        return STATUS_FOOTERS.get(self, "Unknown status")

    @classmethod
    def parse(cls, value) -> "TrackerStatus":
        """Accept either the enum name or its display value, defaulting to ACTIVE."""
        if isinstance(value, cls):
            return value
        for status in cls:
            if value in (status.value, status.name):
                return status
        return cls.ACTIVE


STATUS_COLORS = {
    TrackerStatus.ACTIVE: 0x2B2D31,
    TrackerStatus.MISCONFIGURED: 0xFAA61A,
    TrackerStatus.INACTIVE: 0x747F8D,
    TrackerStatus.ERROR: 0xED4245,
    TrackerStatus.OFFLINE: 0x747F8D,
    TrackerStatus.RECOVERING: 0xFAA61A,
}

STATUS_FOOTERS = {
    TrackerStatus.ACTIVE: "Click 🔄 to report a crash",
    TrackerStatus.MISCONFIGURED: "Using default configuration",
    TrackerStatus.INACTIVE: "Tracker is stopped",
    TrackerStatus.ERROR: "Please restart the tracker",
    TrackerStatus.OFFLINE: "Bot is offline",
    TrackerStatus.RECOVERING: "Recovering from error",
}


@dataclass(frozen=True)
class TrackerRecord:
    """The durable part of a tracker, one row per (group, surface)."""
    group_id: str
    surface_id: str
    display_handle: Optional[str]
    elapsed_seconds: int = 0
    last_actor_id: Optional[str] = None
    last_update_ms: int = 0
    status: TrackerStatus = TrackerStatus.ACTIVE
    total_events: int = 0

    def __post_init__(self):
        if self.elapsed_seconds < 0:
            raise ValueError(f"elapsed_seconds must be >= 0, got {self.elapsed_seconds}")
        if self.total_events < 0:
            raise ValueError(f"total_events must be >= 0, got {self.total_events}")

    @property
    def key(self):
        return (self.group_id, self.surface_id)

    def with_status(self, status: TrackerStatus) -> "TrackerRecord":
        return replace(self, status=status)

    # ──────────────────────────
    # Legacy flat-file layout
    # ──────────────────────────
    def to_legacy_dict(self) -> dict:
        return {
            "displayHandle": self.display_handle,
            "elapsedSeconds": self.elapsed_seconds,
            "lastActorId": self.last_actor_id,
            "lastUpdateEpochMs": self.last_update_ms,
            "totalEvents": self.total_events,
            "status": self.status.value,
        }

    @classmethod
    def from_legacy_dict(cls, group_id: str, surface_id: str, data: dict) -> "TrackerRecord":
        """
        Build a record from one entry of the flat file.
        Both the current key names and the ones written by the first
        version of the bot (messageId, timeSinceLastCrash, ...) are accepted.
        """
        def pick(*names, default=None):
            for name in names:
                if data.get(name) is not None:
                    return data[name]
            return default

        handle = pick("displayHandle", "messageId")
        return cls(
            group_id=str(group_id),
            surface_id=str(surface_id),
            display_handle=str(handle) if handle is not None else None,
            elapsed_seconds=max(0, int(pick("elapsedSeconds", "timeSinceLastCrash", default=0))),
            last_actor_id=pick("lastActorId", "lastCrashBy"),
            last_update_ms=int(pick("lastUpdateEpochMs", "lastUpdate", default=0)),
            status=TrackerStatus.parse(pick("status", default=TrackerStatus.ACTIVE.value)),
            total_events=max(0, int(pick("totalEvents", "totalCrashes", default=0))),
        )
