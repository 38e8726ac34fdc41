#!/usr/bin/env python3
"""
Delete every globally registered slash command of the bot.

Useful after moving commands to guild scope, or when stale global commands
keep showing up in clients. Run from the repository root:
    python scripts/cleanup_global_commands.py
"""
import os
import sys
import asyncio

import discord

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config.config as cfg
from utility.logger import get_logger
log = get_logger()


async def cleanup_global_commands(token: str) -> int:
    client = discord.Client(intents=discord.Intents.none())
    deleted = 0
    async with client:
        await client.login(token)
        app_info = await client.application_info()
        commands = await client.http.get_global_commands(app_info.id)
        log.info(f"Found {len(commands)} global commands to delete.")
        for command in commands:
            await client.http.delete_global_command(app_info.id, command["id"])
            log.info(f"Deleted global command {command['name']}")
            deleted += 1
    return deleted


async def main():
    await cfg.load_config()
    if not cfg.config.bot.bot_token:
        log.error("No bot token configured, nothing to clean up.")
        return 1
    try:
        log.info("Starting cleanup of global commands...")
        deleted = await cleanup_global_commands(cfg.config.bot.bot_token)
        log.info(f"All {deleted} global commands deleted successfully.")
    except discord.HTTPException as e:
        log.error(f"Error during cleanup: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
