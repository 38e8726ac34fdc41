import os
import signal
import asyncio
import discord
from discord.ext import commands

import config.config as cfg
from state.gateway import open_store
from state.records import TrackerStatus
from tracker.manager import TrackerLifecycleManager
from tracker.recovery import RecoveryCoordinator
from tracker.shutdown import ShutdownCoordinator
from utility.discord_surface import DiscordSurface
import utility.helper_functions as helpers
from utility.logger import get_logger, configure_logging
log = get_logger()

COMMANDS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "commands")


# ──────────────────────────
# Load Config Before Creating the Bot
# ──────────────────────────
async def load_config_early():
    log.info("############### Crash Tracker Bot Start ###############")
    if not await cfg.load_config():
        log.warning("Running on default configuration, new trackers will show as misconfigured.")
    configure_logging(cfg.config.debug)
    log.info(
        f"Tracker settings: Updates every {cfg.config.tracker.update_interval_sec} seconds, "
        f"increments by {cfg.config.tracker.increment_amount} seconds"
    )


class TrackerBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = False
        intents.reactions = True
        super().__init__(command_prefix="!", intents=intents)

        self.store = open_store(cfg.config.database)
        self.surface = DiscordSurface(self)
        self.tracker_manager = TrackerLifecycleManager(
            self.surface,
            self.store,
            cfg.config.tracker,
            cfg.config.debug,
            default_status=TrackerStatus.MISCONFIGURED if cfg.misconfigured else TrackerStatus.ACTIVE,
            version=helpers.bot_version(cfg.config.bot.version),
        )
        legacy_path = None
        if cfg.config.database.type == "sqlite" and cfg.config.database.migrate_legacy:
            legacy_path = cfg.config.database.json_path
        self.recovery = RecoveryCoordinator(self.tracker_manager, legacy_json_path=legacy_path)
        self.shutdown = ShutdownCoordinator(self.tracker_manager, self.store)

    async def setup_hook(self):
        await self.store.initialize()
        register_all_commands(self)
        try:
            asyncio.get_running_loop().add_signal_handler(
                signal.SIGTERM, lambda: asyncio.create_task(self.close())
            )
        except NotImplementedError:
            log.debug("SIGTERM handler not supported on this platform")

    async def close(self):
        # Displays must be flipped to offline while the HTTP session is still open
        await self.shutdown.run("Bot is offline")
        await super().close()


def register_all_commands(bot):
    """Register commands from all .py files in the commands folder."""
    for filename in sorted(os.listdir(COMMANDS_DIR)):
        if filename.endswith(".py") and not filename.startswith("_"):
            module_name = filename[:-3]
            try:
                module = __import__(f"commands.{module_name}", fromlist=["register_commands"])
                if hasattr(module, "register_commands"):
                    module.register_commands(bot)
                    log.debug(f"Registered commands from {module_name}")
                else:
                    log.warning(f"No register_commands() function in {module_name}, skipping.")
            except (ImportError, discord.ClientException, discord.app_commands.CommandAlreadyRegistered) as e:
                log.error(f"Error loading {module_name}: {e}")


def create_bot() -> TrackerBot:
    bot = TrackerBot()

    # ──────────────────────────
    # Bot Lifecycle
    # ──────────────────────────
    @bot.event
    async def on_ready():
        if cfg.config.bot.sync_commands:
            try:
                log.info("Attempting to sync commands...")
                synced_commands = await bot.tree.sync()
                log.info(f"Synced {len(synced_commands)} commands.")
            except discord.HTTPException as e:
                log.error(f"Error syncing slash commands: {e}")
        else:
            log.info("Skipping commands sync.")

        # on_ready fires again after reconnects, recovery only runs the first time
        await bot.recovery.run()
        log.info(f"Logged in as {bot.user} (ID: {bot.user.id})")

    @bot.event
    async def on_raw_reaction_add(payload: discord.RawReactionActionEvent):
        await bot.surface.dispatch_reaction(payload)

    @bot.event
    async def on_raw_message_delete(payload: discord.RawMessageDeleteEvent):
        await bot.surface.dispatch_message_delete(payload)

    @bot.event
    async def on_guild_channel_delete(channel):
        await bot.surface.dispatch_channel_delete(channel)

    return bot


def main():
    asyncio.run(load_config_early())
    if not cfg.config.bot.bot_token:
        log.error(f"ERROR: No bot token configured. Set bot.bot_token in {cfg.CONFIG_FILE} or {cfg.TOKEN_ENV_VAR}. Exiting...")
        raise SystemExit(1)
    bot = create_bot()
    bot.run(cfg.config.bot.bot_token, log_handler=None)


if __name__ == "__main__":
    main()
