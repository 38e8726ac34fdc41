import discord
from discord import app_commands

from tracker.errors import RateLimitedError
from utility.logger import get_logger
log = get_logger()
import utility.helper_functions as helpers


def register_commands(bot):

    @bot.tree.command(name="starttracker", description="Start the crash tracker in the current channel")
    @app_commands.guild_only()
    async def slash_start_tracker(interaction: discord.Interaction):
        await helpers.log_interaction(interaction)
        manager = bot.tracker_manager
        if manager.is_active(interaction.guild_id, interaction.channel_id):
            await interaction.response.send_message(
                "A tracker is already running in this channel. Use `/stoptracker` to stop it first.", ephemeral=True
            )
            return

        await interaction.response.send_message("Starting crash tracker...", ephemeral=True)
        try:
            started = await manager.start_tracker(interaction.channel)
        except RateLimitedError as e:
            await interaction.followup.send(f"⏳ {e}", ephemeral=True)
            return
        if not started:
            await interaction.followup.send("❌ Could not start the tracker in this channel.", ephemeral=True)

    @bot.tree.command(name="stoptracker", description="Stop the crash tracker in the current channel")
    @app_commands.guild_only()
    async def slash_stop_tracker(interaction: discord.Interaction):
        await helpers.log_interaction(interaction)
        # Defer first, stopping edits the tracker message and hits the database
        await interaction.response.defer(ephemeral=True, thinking=True)
        if await bot.tracker_manager.stop_tracker(interaction.guild_id, interaction.channel_id):
            await interaction.followup.send("Tracker stopped successfully.", ephemeral=True)
        else:
            await interaction.followup.send("No active tracker found in this channel.", ephemeral=True)
