"""
Notification dispatchers.

``DiscordNotificationDispatcher`` delivers enforcement notices as direct
messages through a py-cord client. ``LoggingNotificationDispatcher`` is used
when no bot token is configured or notices are disabled; it only records that
a notice would have been sent.
"""

from __future__ import annotations

import datetime

import discord

from gavel.datatypes.enforcement_datatypes import NotificationLevel
from gavel.notifications.notification_copy import copy_for
from gavel.util.logger import get_logger

logger = get_logger("notifications")


def build_notice_embed(level: NotificationLevel) -> discord.Embed:
    """Build the DM embed for an enforcement level from the fixed copy."""
    notice = copy_for(level)
    embed = discord.Embed(
        title=notice.title,
        description=notice.body,
        color=discord.Color(notice.color),
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )
    embed.set_footer(text="Community Safety")
    return embed


class DiscordNotificationDispatcher:
    """
    Sends enforcement notices to users by direct message.

    Args:
        bot: Logged-in py-cord client used to resolve users and open DMs.
    """

    def __init__(self, bot: discord.Client) -> None:
        self.bot = bot

    async def send_enforcement_notice(self, user_id: str, level: NotificationLevel) -> None:
        """
        DM ``user_id`` the fixed notice for ``level``.

        Users who have DMs closed are skipped with a debug log. Any other
        failure propagates to the caller, which treats delivery as best-effort.
        """
        user = self.bot.get_user(int(user_id)) or await self.bot.fetch_user(int(user_id))
        try:
            await user.send(embed=build_notice_embed(level))
        except discord.Forbidden:
            logger.debug("[NOTIFY] Could not DM user %s: DMs disabled", user_id)
            return
        logger.info("[NOTIFY] Sent %s notice to user %s", level, user_id)


class LoggingNotificationDispatcher:
    """Dispatcher that delivers nothing and logs each notice instead."""

    async def send_enforcement_notice(self, user_id: str, level: NotificationLevel) -> None:
        logger.info("[NOTIFY] (not delivered) %s notice for user %s", level, user_id)
