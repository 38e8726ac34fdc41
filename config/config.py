import os
import yaml

from config.root_config import *
from utility.logger import get_logger
log = get_logger()

CONFIG_FILE = "config.yaml"
TOKEN_ENV_VAR = "DISCORD_BOT_TOKEN"
config = None
misconfigured = False  # True when running on defaults because config.yaml could not be used

# ──────────────────────────
# Configuration Helper Functions
# ──────────────────────────
async def load_config(file_path: str = CONFIG_FILE) -> bool:
    """
    Load the configuration from a YAML file into a Config dataclass.
    Falls back to defaults and flags the bot as misconfigured when the file
    is missing or unreadable.
    Args:
        file_path (str): Path to the YAML file.
    Returns:
        bool: True if the file was loaded, False if defaults are in use.
    """
    global config, misconfigured
    if not os.path.exists(file_path):
        log.error(f"Config file {file_path} not found. Using defaults.")
        config = Config()
        misconfigured = True
        _apply_env_overrides()
        return False
    try:
        log.debug(f"Loading config from {file_path}...")
        with open(file_path, "r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}
        config = Config(
            bot=BotConfig(**data.get("bot", {})),
            tracker=TrackerConfig(**data.get("tracker", {})),
            database=DatabaseConfig(**data.get("database", {})),
            debug=DebugConfig(**data.get("debug", {})),
        )
    except (OSError, yaml.YAMLError, TypeError, AttributeError) as e:
        config = Config()
        misconfigured = True
        _apply_env_overrides()
        log.error(f"Failed to load config: {e}")
        return False
    misconfigured = False
    _apply_env_overrides()
    log.info("Finished loading config")
    return True

def _apply_env_overrides():
    token = os.environ.get(TOKEN_ENV_VAR)
    if token:
        config.bot.bot_token = token

def save_config(file_path: str = CONFIG_FILE):
    """
    Save the Config dataclass to a YAML file.
    Args:
        file_path (str): Path to the YAML file.
    """
    with open(file_path, "w", encoding="utf-8") as file:
        yaml.dump(
            {
                "bot": config.bot.__dict__,
                "tracker": config.tracker.__dict__,
                "database": config.database.__dict__,
                "debug": config.debug.__dict__,
            },
            file,
            default_flow_style=False,
            allow_unicode=True,
        )
