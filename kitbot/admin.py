"""Discord admin commands and the grant log channel."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set

import discord
from discord.ext import commands

from .config import ConfigurationLoadFailure
from .grant import describe_kit
from .models import EffectStatus, GrantResult, KitSet, TriggerKind
from .rcon import RconClient
from .selection import EmptySelectionSet, InvalidSelectionInput
from .service import KitService
from .utils import format_duration, is_admin, utc_now

logger = logging.getLogger("kitbot.admin")

EMBED_FIELD_VALUE_LIMIT = 1024
STATUS_COLORS = {
    "ok": 0x2ECC71,
    "partial": 0xF1C40F,
    "failed": 0xE74C3C,
}


def _truncate(value: str, limit: int = EMBED_FIELD_VALUE_LIMIT) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - 3] + "..."


def _kit_set_lines(kit_set: KitSet) -> str:
    if not kit_set.kits:
        return "*No kits configured.*"
    return "\n".join(f"- {describe_kit(kit)}" for kit in kit_set.kits)


def _parse_trigger(raw: str) -> Optional[TriggerKind]:
    lowered = raw.strip().lower()
    for trigger in TriggerKind:
        if trigger.value == lowered:
            return trigger
    return None


def build_grant_embed(result: GrantResult, trigger: TriggerKind) -> discord.Embed:
    if not result.failures:
        color = STATUS_COLORS["ok"]
    elif result.granted:
        color = STATUS_COLORS["partial"]
    else:
        color = STATUS_COLORS["failed"]
    embed = discord.Embed(
        title=f"Kit {result.kit_name}",
        description=f"Subject `{result.subject}` ({trigger.value})",
        color=color,
        timestamp=utc_now(),
    )
    sections = (
        ("Granted", EffectStatus.GRANTED),
        ("On cooldown", EffectStatus.BLOCKED),
        ("Failed", EffectStatus.FAILED),
    )
    for label, status in sections:
        lines: List[str] = []
        for outcome in result.outcomes:
            if outcome.status is not status:
                continue
            amount = f" x{outcome.amount}" if outcome.amount else ""
            error = f" ({outcome.error})" if outcome.error else ""
            lines.append(f"{outcome.kind.value}: `{outcome.key}`{amount}{error}")
        if lines:
            embed.add_field(name=label, value=_truncate("\n".join(lines)), inline=False)
    if result.state_changed:
        embed.set_footer(text="Cooldowns updated")
    return embed


class KitAdminCog(commands.Cog):
    """Admin controls for the kit service, plus the optional grant log."""

    def __init__(
        self,
        bot: commands.Bot,
        *,
        service: KitService,
        rcon: Optional[RconClient] = None,
        log_channel_id: int = 0,
        admin_channel_ids: Optional[Iterable[int]] = None,
    ):
        self.bot = bot
        self.service = service
        self.rcon = rcon
        self.log_channel_id = log_channel_id
        self.admin_channel_ids: Set[int] = set(admin_channel_ids or ())
        if log_channel_id:
            service.add_listener(self.post_grant_log)

    #
    # Grant log
    #
    async def post_grant_log(self, result: GrantResult, trigger: TriggerKind) -> None:
        channel = self.bot.get_channel(self.log_channel_id)
        if not isinstance(channel, discord.abc.Messageable):
            logger.debug("Grant log channel %s unavailable.", self.log_channel_id)
            return
        try:
            await channel.send(embed=build_grant_embed(result, trigger))
        except discord.HTTPException as exc:
            logger.warning("Failed to post grant log for %s: %s", result.subject, exc)

    #
    # Command guards
    #
    async def _ensure_admin(self, ctx: commands.Context) -> bool:
        if self.admin_channel_ids and getattr(ctx.channel, "id", None) not in self.admin_channel_ids:
            logger.debug("Kit command ignored in channel %s.", getattr(ctx.channel, "id", None))
            return False
        if not isinstance(ctx.author, discord.Member):
            await ctx.reply("Run this command inside a server.", mention_author=False)
            return False
        if not is_admin(ctx.author):
            await ctx.reply("You lack permission to run this command.", mention_author=False)
            return False
        return True

    #
    # Commands
    #
    async def status_command(self, ctx: commands.Context) -> None:
        if not await self._ensure_admin(ctx):
            return
        config = self.service.config
        embed = discord.Embed(
            title="Kit status",
            description="Kits are **enabled**." if config.enabled else "Kits are **disabled**.",
            color=0x5865F2,
            timestamp=utc_now(),
        )
        embed.add_field(
            name=f"Respawn ({config.respawn.policy.value})",
            value=_truncate(_kit_set_lines(config.respawn)),
            inline=False,
        )
        if config.spawn is not None:
            embed.add_field(
                name=f"Spawn ({config.spawn.policy.value})",
                value=_truncate(_kit_set_lines(config.spawn)),
                inline=False,
            )
        embed.add_field(name="Active cooldowns", value=str(len(self.service.cooldowns)), inline=True)
        embed.add_field(name="Rotation entries", value=str(len(self.service.selector.memory)), inline=True)
        if self.rcon is not None:
            embed.add_field(
                name="RCON",
                value="connected" if self.rcon.connected.is_set() else "disconnected",
                inline=True,
            )
        await ctx.send(embed=embed)

    async def reload_command(self, ctx: commands.Context) -> None:
        if not await self._ensure_admin(ctx):
            return
        try:
            config = self.service.reload_config()
        except ConfigurationLoadFailure as exc:
            logger.warning("Kit reload by %s failed: %s", ctx.author, exc)
            await ctx.reply(f"Config unreadable, keeping the previous kits: {exc}", mention_author=False)
            return
        except (InvalidSelectionInput, EmptySelectionSet) as exc:
            logger.warning("Kit reload by %s rejected: %s", ctx.author, exc)
            await ctx.reply(f"Config rejected, keeping the previous kits: {exc}", mention_author=False)
            return
        logger.info("Kit config reloaded by %s (%s)", ctx.author, ctx.author.id)
        await ctx.reply(
            f"Kit config reloaded: {len(config.respawn.kits)} respawn kit(s), "
            f"{'enabled' if config.enabled else 'disabled'}.",
            mention_author=False,
        )

    async def reset_command(self, ctx: commands.Context, confirmation: str = "") -> None:
        if not await self._ensure_admin(ctx):
            return
        if confirmation.strip().lower() != "confirm":
            await ctx.reply(
                "This clears every cooldown and kit rotation. Run `!kitreset confirm` to proceed.",
                mention_author=False,
            )
            return
        await self.service.reset_session()
        logger.info("Kit session reset by %s (%s)", ctx.author, ctx.author.id)
        await ctx.reply("Cooldowns and kit rotation cleared.", mention_author=False)

    async def grant_command(self, ctx: commands.Context, subject: str, trigger: str = "respawn", *, kit_name: str = "") -> None:
        if not await self._ensure_admin(ctx):
            return
        trigger_kind = _parse_trigger(trigger)
        if trigger_kind is None:
            await ctx.reply("Trigger must be `spawn` or `respawn`.", mention_author=False)
            return
        try:
            result = await self.service.handle_trigger(
                subject,
                trigger_kind,
                kit_name=kit_name.strip() or None,
                force=True,
            )
        except (InvalidSelectionInput, EmptySelectionSet) as exc:
            await ctx.reply(f"Kit selection failed: {exc}", mention_author=False)
            return
        if result is None:
            await ctx.reply("No kit was granted (nothing enabled or kit not found).", mention_author=False)
            return
        logger.info("Manual kit grant of %s to %s by %s", result.kit_name, subject, ctx.author)
        await ctx.send(embed=build_grant_embed(result, trigger_kind))

    async def cooldowns_command(self, ctx: commands.Context, subject: str) -> None:
        if not await self._ensure_admin(ctx):
            return
        entries = self.service.cooldowns.entries_for(subject.strip())
        if not entries:
            await ctx.reply(f"`{subject}` has no active cooldowns.", mention_author=False)
            return
        now = utc_now()
        lines = [
            f"`{item_key}`: {format_duration((expires_at - now).total_seconds())}"
            for item_key, expires_at in sorted(entries.items(), key=lambda pair: pair[1])
        ]
        embed = discord.Embed(
            title=f"Cooldowns for {subject}",
            description=_truncate("\n".join(lines), 4000),
            color=0x95A5A6,
        )
        await ctx.send(embed=embed)


async def add_kit_admin_cog(
    bot: commands.Bot,
    *,
    service: KitService,
    rcon: Optional[RconClient] = None,
    log_channel_id: int = 0,
    admin_channel_ids: Optional[Iterable[int]] = None,
) -> KitAdminCog:
    cog = KitAdminCog(
        bot,
        service=service,
        rcon=rcon,
        log_channel_id=log_channel_id,
        admin_channel_ids=admin_channel_ids,
    )
    await bot.add_cog(cog)
    if log_channel_id:
        logger.info("Kit grant log enabled for channel id %s", log_channel_id)
    return cog


__all__ = ["KitAdminCog", "add_kit_admin_cog", "build_grant_embed"]
