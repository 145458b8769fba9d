"""Daily project rollup, the !rollup command, and new-project announcements."""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone

import discord
from discord.ext import commands, tasks

from rollupbot.rollup import ProjectRollup
from rollupbot.rollup.publisher import EMBED_COLOR, is_publishable, resolve_channel
from rollupbot.settings import RollupSettings

__all__ = ["ProjectRollupCog"]

_LOG = logging.getLogger(__name__)

STARTER_EXCERPT_CHARS = 1500

WELCOME_MESSAGE = """👋 **Welcome to Your Project Thread, <@{owner_id}>!** 🎉

Thanks for logging your project! This thread will help you track progress and share updates with the community.

**Daily Updates**
We encourage you to post updates here daily. Each morning ({schedule}), a summary of your updates will be posted to the general channel.

**Opt-Out of Daily Summaries**
If you prefer not to have your updates included in the daily rollup, react to this thread's starter message with the :no_mobile_phones: (📵) emoji.

**Best Practices**
Share your progress, blockers, and wins! The more you share, the more the community can help and celebrate with you."""


class ProjectRollupCog(commands.Cog):
    """Summarize project forum threads on a schedule or on demand."""

    def __init__(
        self,
        bot: commands.Bot,
        settings: RollupSettings | None = None,
        rollup: ProjectRollup | None = None,
    ) -> None:
        self.bot = bot
        self.settings = settings or RollupSettings.from_env()
        self.rollup = rollup or ProjectRollup.from_settings(bot, self.settings)

        missing = self.settings.missing()
        if missing:
            _LOG.warning("ProjectRollup loaded without %s; runs will be skipped.", ", ".join(missing))

        self.daily_rollup.change_interval(time=self.settings.rollup_time)

    async def cog_load(self) -> None:
        self.daily_rollup.start()
        _LOG.info("ProjectRollup scheduled daily at %s %s", self.settings.rollup_time, self.settings.timezone)

    async def cog_unload(self) -> None:
        self.daily_rollup.cancel()

    # ==================== Scheduled run ====================

    @tasks.loop(time=time(hour=8))
    async def daily_rollup(self) -> None:
        """Post the daily rollup of everything new since the last one."""
        try:
            await self.rollup.run()
        except Exception:  # noqa: BLE001
            _LOG.exception("Scheduled project rollup failed")

    @daily_rollup.before_loop
    async def before_daily_rollup(self) -> None:
        await self.bot.wait_until_ready()

    # ==================== Commands ====================

    @commands.command(name="rollup")
    @commands.guild_only()
    async def rollup_command(self, ctx: commands.Context) -> None:
        """Post a project rollup for the last 24 hours in this channel.

        Usage: !rollup
        Does not move the daily rollup's checkpoints.
        """
        missing = self.settings.missing(explicit_target=True)
        if missing:
            await ctx.reply(f"Project rollup is not configured (missing {', '.join(missing)}).")
            return

        hours = self.settings.manual_window_hours
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        try:
            items = await self.rollup.run(
                cutoff=cutoff,
                post_channel_id=ctx.channel.id,
                update_last_seen=False,
            )
        except Exception:  # noqa: BLE001
            _LOG.exception("Manual project rollup failed")
            await ctx.reply("Failed to generate project rollup. Check logs.")
            return
        if not items:
            await ctx.reply(f"No project updates in the last {hours:g} hours.")
            return
        await ctx.reply(f"Project rollup posted for the last {hours:g} hours ({len(items)} project(s)).")

    # ==================== New project threads ====================

    @commands.Cog.listener("on_thread_create")
    async def on_thread_create(self, thread: discord.Thread) -> None:
        """Announce a new project thread and explain the rollup to its owner."""
        if self.settings.forum_channel_id is None or thread.parent_id != self.settings.forum_channel_id:
            return

        await self._announce_new_project(thread)

        schedule = f"{self.settings.rollup_time.strftime('%H:%M')} {self.settings.timezone}"
        try:
            await thread.send(WELCOME_MESSAGE.format(owner_id=thread.owner_id, schedule=schedule))
        except discord.HTTPException:
            _LOG.exception("Failed to send welcome message to thread %s", thread.id)

    async def _announce_new_project(self, thread: discord.Thread) -> None:
        channel_id = self.settings.general_channel_id
        if channel_id is None:
            return
        channel = await resolve_channel(self.bot, channel_id)
        if not is_publishable(channel):
            _LOG.warning("General channel %s is not a text channel; skipping announcement", channel_id)
            return

        description = "A new project thread has been created!"
        try:
            starter = thread.starter_message or await thread.fetch_message(thread.id)
            if starter is not None and starter.content:
                content = starter.content
                if len(content) > STARTER_EXCERPT_CHARS:
                    content = content[:STARTER_EXCERPT_CHARS] + "..."
                description = content
        except discord.HTTPException:
            _LOG.exception("Failed to fetch starter message for thread %s", thread.id)

        embed = discord.Embed(
            title=f"New Project: {thread.name or 'Untitled Project'}",
            description=description,
            color=EMBED_COLOR,
            timestamp=datetime.now(timezone.utc),
        )
        embed.add_field(name="Project", value=f"<#{thread.id}>", inline=True)
        embed.add_field(name="Creator", value=f"<@{thread.owner_id}>", inline=True)
        try:
            await channel.send(embed=embed)
        except discord.HTTPException:
            _LOG.exception("Failed to announce new project thread %s", thread.id)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(ProjectRollupCog(bot))
