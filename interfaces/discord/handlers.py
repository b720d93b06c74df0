from __future__ import annotations

import asyncio
import logging
from typing import Collection, List, Optional

import discord
from discord.ext import commands

from application.services import ALIASES, Command, EconomyService, ExternalContext
from interfaces.commands import is_admin_action, takes_target, with_target
from interfaces.formatting import help_text, render

logger = logging.getLogger(__name__)


def _build_external_context(user: discord.abc.User) -> ExternalContext:
    """Create an `ExternalContext` from a Discord user."""

    return ExternalContext(
        provider="discord",
        user_id=str(user.id),
        display_name=user.display_name or user.name,
    )


def _mentioned_user(message: discord.Message) -> Optional[discord.abc.User]:
    """First mentioned user, falling back to the author of a replied-to message."""

    mentions = [m for m in message.mentions if not m.bot]
    if mentions:
        return mentions[0]
    reference = message.reference
    if reference is not None and isinstance(reference.resolved, discord.Message):
        return reference.resolved.author
    return None


def _aliases_for(action: str) -> List[str]:
    return sorted(alias for alias, target in ALIASES.items() if target == action)


def create_discord_bot(
    service: EconomyService,
    prefix: str = "!",
    admin_ids: Collection[str] = (),
) -> commands.Bot:
    """
    Configure and return a Discord bot exposing every economy action as a
    prefix command (`!work`, `!send 500 @user`, `!clan create Wolves`, ...).

    Admin commands (`ecogive`, `ecosetbalance`, `ecoreset`, `ecosettings`)
    are allowed for members with Manage Server or whose ID is in `admin_ids`.
    """

    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.members = True

    # Disable the default help command so we can provide our own `!help`.
    bot = commands.Bot(command_prefix=prefix, intents=intents, help_command=None)
    currency = service.settings.currency
    admins = {str(a) for a in admin_ids}

    async def _dispatch(ctx: commands.Context, action: str, args: List[str]) -> None:
        mentioned = _mentioned_user(ctx.message) if takes_target(action) else None
        target = _build_external_context(mentioned) if mentioned is not None else None
        command = Command(
            context=_build_external_context(ctx.author),
            action=action,
            args=with_target(action, args, target.user_id if target else None),
            request_id=f"discord:{ctx.message.id}",
            target=target,
        )
        # The service blocks on locks and storage; keep it off the event loop.
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, service.dispatch, command)
        await ctx.send(render(result, currency))

    def _is_admin(ctx: commands.Context) -> bool:
        if str(ctx.author.id) in admins:
            return True
        permissions = getattr(ctx.author, "guild_permissions", None)
        return bool(permissions and permissions.manage_guild)

    def _make_command(action: str) -> commands.Command:
        async def callback(ctx: commands.Context, *args: str) -> None:
            await _dispatch(ctx, action, list(args))

        checks = [_is_admin] if is_admin_action(action) else []
        return commands.Command(
            callback,
            name=action,
            aliases=_aliases_for(action),
            checks=checks,
        )

    for action in service.actions_supported:
        bot.add_command(_make_command(action))

    @bot.event
    async def on_ready():
        logger.info("Discord bot logged in as %s (id=%s)", bot.user, bot.user.id)

    @bot.command(name="help")
    async def help_cmd(ctx: commands.Context):
        await ctx.send(f"```\n{help_text(prefix)}\n```")

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, commands.CommandNotFound):
            return
        if isinstance(error, commands.CheckFailure):
            await ctx.send("❌ Only admins can use that command.")
            return
        logger.error("Command %s failed", ctx.command, exc_info=error)
        await ctx.send("⚠️ Something went wrong. Please try again later.")

    return bot
