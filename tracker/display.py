import datetime
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from state.records import TrackerStatus
from utility.helper_functions import format_time, code_block

ERROR_COLOR = 0xED4245


@dataclass
class DisplayContent:
    """Platform independent description of what a tracker display shows."""
    title: str
    description: str
    color: int
    footer: str
    fields: List[Tuple[str, str, bool]] = field(default_factory=list)  # (name, value, inline)
    timestamp: datetime.datetime = field(default_factory=lambda: datetime.datetime.now(datetime.timezone.utc))

    def add_field(self, name: str, value: str, inline: bool = True) -> "DisplayContent":
        self.fields.append((name, value, inline))
        return self

    def field_value(self, name: str) -> Optional[str]:
        for field_name, value, _ in self.fields:
            if field_name == name:
                return value
        return None


def _elapsed_description(elapsed_seconds: int) -> str:
    return f"**Time since last crash:**\n{code_block(format_time(elapsed_seconds), 'ansi')}"

def _relative_timestamp() -> str:
    return f"<t:{int(datetime.datetime.now().timestamp())}:R>"


def render_tracker(state, status: TrackerStatus, title: str, version: str,
                   footer: Optional[str] = None, debug_info: Optional[str] = None) -> DisplayContent:
    """
    Build the regular tracker display.
    Args:
        state: Anything with elapsed_seconds, total_events and last_actor_id.
        status (TrackerStatus): The status to show.
        footer (str): Overrides the status footer, used for the offline reason.
        debug_info (str): Extra debug field, only when debug mode is on.
    """
    content = DisplayContent(
        title=title,
        description=_elapsed_description(state.elapsed_seconds),
        color=status.color,
        footer=footer or status.footer,
    )
    content.add_field("📊 Status", code_block(status.value))
    content.add_field("⏰ Last Update", _relative_timestamp())
    content.add_field("📦 Version", code_block(version))
    content.add_field("💥 Total Crashes", code_block(state.total_events))
    if state.last_actor_id:
        content.add_field("👤 Last Crash Reporter", f"<@{state.last_actor_id}>", inline=False)
    if debug_info:
        content.add_field("🔧 Debug Info", code_block(debug_info, "ansi"), inline=False)
    return content


def render_error(elapsed_seconds: int, error: BaseException, retry_count: int, max_retries: int) -> DisplayContent:
    """The final display left behind when a tracker gives up."""
    content = DisplayContent(
        title="⚠️ Tracker Error",
        description=f"**Connection Error**\n\nLast known time:\n{code_block(format_time(elapsed_seconds), 'ansi')}",
        color=ERROR_COLOR,
        footer=TrackerStatus.ERROR.footer,
    )
    content.add_field("📊 Status", code_block(TrackerStatus.ERROR.value))
    content.add_field("⏰ Last Update", _relative_timestamp())
    content.add_field("❌ Error Type", code_block(type(error).__name__))
    content.add_field("🔍 Error Details", code_block(str(error) or "No details"), inline=False)
    content.add_field("🔄 Retry Count", code_block(f"{retry_count}/{max_retries}"))
    return content


def debug_info(log_level: str, retry_count: int, max_retries: int) -> str:
    return "\n".join([
        "Debug Mode: Enabled",
        f"Log Level: {log_level}",
        f"Retry Count: {retry_count}/{max_retries}",
        f"Last Update: {datetime.datetime.now(datetime.timezone.utc).isoformat()}",
    ])
