import asyncio
from typing import Dict

import aiohttp
import discord

from tracker.display import DisplayContent
from tracker.errors import TransientRenderError
from tracker.surface import MarkerKind, MarkerSubscription, NotificationSurface
from utility.logger import get_logger
log = get_logger()

FOOTER_ICON_URL = "https://i.imgur.com/AfFp7pu.png"

# discord.py raises HTTPException for API errors, transport failures come through raw
PLATFORM_ERRORS = (discord.HTTPException, aiohttp.ClientError, OSError, asyncio.TimeoutError)


def to_embed(content: DisplayContent) -> discord.Embed:
    embed = discord.Embed(
        title=content.title,
        description=content.description,
        color=content.color,
        timestamp=content.timestamp,
    )
    for name, value, inline in content.fields:
        embed.add_field(name=name, value=value, inline=inline)
    embed.set_footer(text=content.footer, icon_url=FOOTER_ICON_URL)
    return embed


class DiscordSurface(NotificationSurface):
    """
    Trackers on Discord: a display is a message with an embed, markers are
    reactions. Reaction and message-delete gateway events are forwarded here
    from the bot's on_raw_* listeners.
    """

    def __init__(self, bot: discord.Client):
        self.bot = bot
        self._subscriptions: Dict[int, MarkerSubscription] = {}

    # ──────────────────────────
    # Displays
    # ──────────────────────────
    async def create_display(self, channel, content: DisplayContent):
        try:
            return await channel.send(embed=to_embed(content))
        except PLATFORM_ERRORS as e:
            raise TransientRenderError(f"Could not post tracker in channel {channel.id}: {e}") from e

    async def update_display(self, display: discord.Message, content: DisplayContent):
        try:
            await display.edit(embed=to_embed(content))
        except PLATFORM_ERRORS as e:
            raise TransientRenderError(f"Could not edit tracker message {display.id}: {e}") from e

    async def send_error(self, channel, content: DisplayContent):
        try:
            await channel.send(embed=to_embed(content))
        except PLATFORM_ERRORS as e:
            raise TransientRenderError(f"Could not post error in channel {channel.id}: {e}") from e

    async def resolve_channel(self, group_id: str, surface_id: str):
        guild = self.bot.get_guild(int(group_id))
        if guild is None:
            return None
        channel = guild.get_channel(int(surface_id))
        if channel is None:
            try:
                channel = await guild.fetch_channel(int(surface_id))
            except (discord.NotFound, discord.Forbidden):
                return None
            except PLATFORM_ERRORS as e:
                raise TransientRenderError(f"Could not fetch channel {surface_id}: {e}") from e
        return channel

    async def fetch_display(self, channel, display_handle: str):
        try:
            return await channel.fetch_message(int(display_handle))
        except (discord.NotFound, discord.Forbidden):
            return None
        except PLATFORM_ERRORS as e:
            raise TransientRenderError(f"Could not fetch message {display_handle}: {e}") from e

    # ──────────────────────────
    # Markers
    # ──────────────────────────
    async def add_marker(self, display: discord.Message, marker: str):
        try:
            await display.add_reaction(marker)
        except PLATFORM_ERRORS as e:
            raise TransientRenderError(f"Could not add {marker} to message {display.id}: {e}") from e

    async def remove_marker(self, display: discord.Message, marker: str, actor_id: str):
        channel = display.channel
        guild = getattr(channel, "guild", None)
        if guild is None or not channel.permissions_for(guild.me).manage_messages:
            log.debug(f"Missing Manage Messages in channel {channel.id}, leaving reaction of {actor_id}")
            return
        try:
            await display.remove_reaction(marker, discord.Object(id=int(actor_id)))
        except PLATFORM_ERRORS as e:
            raise TransientRenderError(f"Could not remove reaction of {actor_id}: {e}") from e

    def subscribe_to_marker_events(self, display, markers: Dict[str, MarkerKind], on_event, on_end) -> MarkerSubscription:
        message_id = display.id
        subscription = MarkerSubscription(
            markers, on_event, on_end,
            unsubscribe=lambda: self._unsubscribe(message_id, subscription),
        )
        subscription.channel_id = display.channel.id
        self._subscriptions[message_id] = subscription
        return subscription

    def _unsubscribe(self, message_id: int, subscription: MarkerSubscription):
        if self._subscriptions.get(message_id) is subscription:
            del self._subscriptions[message_id]

    # ──────────────────────────
    # Gateway event forwarding
    # ──────────────────────────
    async def dispatch_reaction(self, payload: discord.RawReactionActionEvent):
        subscription = self._subscriptions.get(payload.message_id)
        if subscription is None:
            return
        if self.bot.user is not None and payload.user_id == self.bot.user.id:
            return
        if payload.member is not None and payload.member.bot:
            return
        await subscription.emit(str(payload.user_id), str(payload.emoji))

    async def dispatch_message_delete(self, payload: discord.RawMessageDeleteEvent):
        subscription = self._subscriptions.get(payload.message_id)
        if subscription is not None:
            await subscription.end()

    async def dispatch_channel_delete(self, channel):
        ended = [s for s in self._subscriptions.values() if s.channel_id == channel.id]
        for subscription in ended:
            await subscription.end()
