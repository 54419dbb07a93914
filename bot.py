import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import discord
from discord.ext import commands
from dotenv import load_dotenv

from kitbot.admin import KitAdminCog, add_kit_admin_cog
from kitbot.config import load_kit_config
from kitbot.cooldowns import CooldownTracker
from kitbot.events import DEFAULT_RESPAWN_PATTERN, DEFAULT_SPAWN_PATTERN, ConsoleEventParser
from kitbot.grant import GrantEngine
from kitbot.models import TriggerKind
from kitbot.rcon import (
    DEFAULT_GIVE_TEMPLATE,
    DEFAULT_MESSAGE_TEMPLATE,
    DEFAULT_STRIP_TEMPLATE,
    RconClient,
    RconGameServer,
)
from kitbot.selection import KitSelector, RotationMemory
from kitbot.service import KitService
from kitbot.state import CooldownStore
from kitbot.utils import float_from_env, int_from_env, parse_channel_ids, path_from_env

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent

logging.basicConfig(
    level=os.getenv("KITBOT_LOG_LEVEL", "INFO"),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("kitbot")


def _resolve_path(name: str, default: str) -> Path:
    path = path_from_env(name) or Path(default)
    if not path.is_absolute():
        path = (BASE_DIR / path).resolve()
    return path


DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")
if not DISCORD_TOKEN:
    raise RuntimeError("Missing DISCORD_TOKEN. Set it in your environment or .env file.")

KIT_CONFIG_PATH = _resolve_path("KITBOT_CONFIG_PATH", "kits.json")
COOLDOWN_STATE_PATH = _resolve_path("KITBOT_STATE_PATH", "kitbot_cooldowns.json")
LOG_CHANNEL_ID = int_from_env("KITBOT_LOG_CHANNEL_ID", 0)
ADMIN_CHANNEL_IDS = parse_channel_ids(os.getenv("KITBOT_ADMIN_CHANNEL_IDS", ""))

RCON_HOST = os.getenv("KITBOT_RCON_HOST", "127.0.0.1").strip()
RCON_PORT = int_from_env("KITBOT_RCON_PORT", 28016)
RCON_PASSWORD = os.getenv("KITBOT_RCON_PASSWORD", "")
RCON_TIMEOUT = float_from_env("KITBOT_RCON_TIMEOUT", 10.0)
RCON_RECONNECT_DELAY = float_from_env("KITBOT_RCON_RECONNECT_DELAY", 5.0)

GIVE_TEMPLATE = os.getenv("KITBOT_GIVE_TEMPLATE", DEFAULT_GIVE_TEMPLATE)
STRIP_TEMPLATE = os.getenv("KITBOT_STRIP_TEMPLATE", DEFAULT_STRIP_TEMPLATE)
MESSAGE_TEMPLATE = os.getenv("KITBOT_MESSAGE_TEMPLATE", DEFAULT_MESSAGE_TEMPLATE)
SPAWN_PATTERN = os.getenv("KITBOT_SPAWN_PATTERN", DEFAULT_SPAWN_PATTERN)
RESPAWN_PATTERN = os.getenv("KITBOT_RESPAWN_PATTERN", DEFAULT_RESPAWN_PATTERN)

if not RCON_PASSWORD:
    logger.warning("KITBOT_RCON_PASSWORD is empty; the RCON connection will likely be refused.")
if not MESSAGE_TEMPLATE:
    logger.warning("KITBOT_MESSAGE_TEMPLATE is empty; kit messages will be reported as failed.")

# Validation errors in the kit file stop startup here.
kit_config = load_kit_config(KIT_CONFIG_PATH)

rcon_client = RconClient(
    RCON_HOST,
    RCON_PORT,
    RCON_PASSWORD,
    timeout=RCON_TIMEOUT,
    reconnect_delay=RCON_RECONNECT_DELAY,
)
game_server = RconGameServer(
    rcon_client,
    give_template=GIVE_TEMPLATE,
    strip_template=STRIP_TEMPLATE,
    message_template=MESSAGE_TEMPLATE,
)
kit_service = KitService(
    config=kit_config,
    engine=GrantEngine(CooldownTracker(), game_server),
    selector=KitSelector(RotationMemory()),
    store=CooldownStore(COOLDOWN_STATE_PATH),
    config_path=KIT_CONFIG_PATH,
)
event_parser = ConsoleEventParser(spawn_pattern=SPAWN_PATTERN, respawn_pattern=RESPAWN_PATTERN)

intents = discord.Intents.default()
intents.message_content = True
intents.members = True


class KitBot(commands.Bot):
    async def setup_hook(self) -> None:
        await setup_bot_extensions()


bot = KitBot(command_prefix=os.getenv("KITBOT_PREFIX", "!"), intents=intents)
ADMIN_COG: Optional[KitAdminCog] = None
_RCON_TASK: Optional[asyncio.Task] = None


async def handle_console_line(line: str) -> None:
    event = event_parser.parse(line)
    if event is None:
        return
    if event.trigger is TriggerKind.SPAWN:
        await kit_service.on_subject_spawned(event.subject)
    else:
        await kit_service.on_subject_respawned(event.subject)


async def setup_bot_extensions() -> None:
    global ADMIN_COG, _RCON_TASK
    kit_service.load_state()
    ADMIN_COG = await add_kit_admin_cog(
        bot,
        service=kit_service,
        rcon=rcon_client,
        log_channel_id=LOG_CHANNEL_ID,
        admin_channel_ids=ADMIN_CHANNEL_IDS,
    )
    _RCON_TASK = asyncio.create_task(rcon_client.run(handle_console_line))
    logger.info("RCON listener started for %s:%s", RCON_HOST, RCON_PORT)


@bot.event
async def on_ready():
    logger.info("Logged in as %s (%s)", bot.user, getattr(bot.user, "id", "?"))


@bot.command(name="kitstatus")
async def kit_status_command(ctx: commands.Context):
    if ADMIN_COG is not None:
        await ADMIN_COG.status_command(ctx)


@bot.command(name="kitreload")
async def kit_reload_command(ctx: commands.Context):
    if ADMIN_COG is not None:
        await ADMIN_COG.reload_command(ctx)


@bot.command(name="kitreset")
async def kit_reset_command(ctx: commands.Context, confirmation: str = ""):
    if ADMIN_COG is not None:
        await ADMIN_COG.reset_command(ctx, confirmation)


@bot.command(name="kitgrant")
async def kit_grant_command(ctx: commands.Context, subject: str, trigger: str = "respawn", *, kit_name: str = ""):
    if ADMIN_COG is not None:
        await ADMIN_COG.grant_command(ctx, subject, trigger, kit_name=kit_name)


@bot.command(name="kitcooldowns")
async def kit_cooldowns_command(ctx: commands.Context, subject: str):
    if ADMIN_COG is not None:
        await ADMIN_COG.cooldowns_command(ctx, subject)


async def main() -> None:
    try:
        async with bot:
            await bot.start(DISCORD_TOKEN)
    finally:
        await rcon_client.close()
        if _RCON_TASK is not None:
            _RCON_TASK.cancel()


if __name__ == "__main__":
    asyncio.run(main())
