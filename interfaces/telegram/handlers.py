from __future__ import annotations

import logging
from typing import Collection, Optional

import telebot

from application.services import ALIASES, Command, EconomyService, ExternalContext
from interfaces.commands import is_admin_action, split_command, takes_target, with_target
from interfaces.formatting import help_text, render

logger = logging.getLogger(__name__)


def _build_external_context(message) -> ExternalContext:
    """Extract a channel-agnostic context object from a Telegram message."""

    user = message.from_user
    display_name = " ".join(p for p in (user.first_name, user.last_name) if p)
    return ExternalContext(
        provider="telegram",
        user_id=str(user.id),
        display_name=display_name or (user.username or ""),
    )


def _replied_user(message) -> Optional[ExternalContext]:
    """Telegram has no user mentions by ID; replying to someone picks the target."""

    reply = message.reply_to_message
    if reply is None or reply.from_user is None or reply.from_user.is_bot:
        return None
    return _build_external_context(reply)


def create_telegram_bot(
    bot_token: str,
    service: EconomyService,
    admin_ids: Collection[str] = (),
) -> telebot.TeleBot:
    """
    Configure and return a TeleBot instance wired to the economy service.

    This module contains only Telegram-specific concerns: parsing Telegram
    messages into `Command`s and sending back the rendered result.
    """

    bot = telebot.TeleBot(bot_token)
    currency = service.settings.currency
    admins = {str(a) for a in admin_ids}
    economy_commands = service.actions_supported + sorted(
        alias for alias in ALIASES if alias not in service.actions_supported
    )

    @bot.message_handler(commands=["start", "help"])
    def handle_help(message):
        bot.send_message(
            message.chat.id,
            "Welcome to the economy bot!\n\n" + help_text("/"),
        )

    @bot.message_handler(commands=economy_commands)
    def handle_economy(message):
        parsed = split_command(message.text, "/")
        if parsed is None:
            return
        action, args = parsed
        context = _build_external_context(message)

        if is_admin_action(action) and context.user_id not in admins:
            bot.reply_to(message, "❌ Only admins can use that command.")
            return

        target = _replied_user(message) if takes_target(action) else None
        command = Command(
            context=context,
            action=action,
            args=with_target(action, args, target.user_id if target else None),
            request_id=f"telegram:{message.chat.id}:{message.message_id}",
            target=target,
        )
        try:
            result = service.dispatch(command)
        except Exception:
            logger.exception("Telegram command %s failed", action)
            bot.reply_to(message, "⚠️ Something went wrong. Please try again later.")
            return

        bot.reply_to(message, render(result, currency))

    return bot
