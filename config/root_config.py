from dataclasses import dataclass, field


@dataclass
class BotConfig:
    bot_token: str = ""
    sync_commands: bool = True
    version: str = ""  # Empty means "use the installed package version"


@dataclass
class TrackerConfig:
    title: str = "🛩️ Minicopter Crash Tracker"
    update_interval_sec: float = 10
    increment_amount: int = 10
    max_retries: int = 3
    start_rate_limit: int = 1
    start_rate_window_ms: int = 5000
    reset_clears_total_events: bool = True
    crash_marker: str = "🔄"
    reset_marker: str = "⏹️"

    def __post_init__(self):
        """ Clamp values that would break the tick loop or the retry logic. """
        if self.update_interval_sec <= 0:
            self.update_interval_sec = 10
        if self.increment_amount < 0:
            self.increment_amount = 0
        if self.max_retries < 1:
            self.max_retries = 1


@dataclass
class DatabaseConfig:
    type: str = "sqlite"  # "sqlite" or "json"
    sqlite_path: str = "_data/trackers.db"
    json_path: str = "_data/crashData.json"
    migrate_legacy: bool = True


@dataclass
class DebugConfig:
    enabled: bool = False
    log_level: str = "info"
    show_stack_traces: bool = False


@dataclass
class Config:
    bot: BotConfig = field(default_factory=BotConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    debug: DebugConfig = field(default_factory=DebugConfig)
