from importlib import metadata

import discord

from utility.logger import get_logger
log = get_logger()

DISTRIBUTION_NAME = "crash-tracker-bot"

def format_time(seconds: int) -> str:
    """
    Format a duration the way the tracker shows it, e.g. "1d 2h 3m 4s".
    Leading zero units are dropped, seconds are always shown.
    """
    seconds = max(0, int(seconds))
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60

    time_string = ""
    if days > 0:
        time_string += f"{days}d "
    if hours > 0 or days > 0:
        time_string += f"{hours}h "
    if minutes > 0 or hours > 0 or days > 0:
        time_string += f"{minutes}m "
    time_string += f"{secs}s"
    return time_string

def code_block(text, lang: str = "") -> str:
    return f"```{lang}\n{text}```" if lang else f"```{text}```"

def bot_version(configured: str = "") -> str:
    """The version shown on the displays: the configured one, else the installed package version."""
    if configured:
        return configured
    try:
        return metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        return "Unknown"

async def log_interaction(interaction: discord.Interaction):
    """Log who ran which slash command where."""
    command = interaction.command.qualified_name if interaction.command else "unknown"
    where = f"guild {interaction.guild_id}, channel {interaction.channel_id}" if interaction.guild_id else "DM"
    log.info(f"[Command] /{command} by {interaction.user} ({interaction.user.id}) in {where}")
