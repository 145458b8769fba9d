"""Forum thread discovery and the rollup opt-out policy."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

import discord

_LOG = logging.getLogger(__name__)

ELIGIBLE_THREAD_TYPES = frozenset(
    {
        discord.ChannelType.public_thread,
        discord.ChannelType.private_thread,
        discord.ChannelType.news_thread,
    }
)


async def _active_threads(forum: discord.ForumChannel) -> list[discord.Thread]:
    guild_threads = await forum.guild.active_threads()
    return [t for t in guild_threads if t.parent_id == forum.id]


async def _archived_threads(forum: discord.ForumChannel) -> list[discord.Thread]:
    return [t async for t in forum.archived_threads(limit=None)]


async def fetch_all_threads(
    forum: discord.ForumChannel,
    *,
    timeout: float | None = None,
) -> list[discord.Thread]:
    """Return the open and archived threads of a forum channel.

    The two lists are fetched independently; if one of them fails the other
    is still returned. A thread present in both lists is returned once.
    """
    threads: list[discord.Thread] = []
    seen: set[int] = set()

    for label, fetch in (("active", _active_threads), ("archived", _archived_threads)):
        try:
            batch = await asyncio.wait_for(fetch(forum), timeout)
        except (discord.HTTPException, asyncio.TimeoutError) as e:
            _LOG.error("Failed to fetch %s threads for forum %s: %s", label, forum.id, e)
            continue
        for thread in batch:
            if thread.id in seen:
                continue
            seen.add(thread.id)
            threads.append(thread)

    return threads


def is_eligible_thread(thread: discord.Thread) -> bool:
    """Only discussion threads (public, private, announcement) are rolled up."""
    return thread.type in ELIGIBLE_THREAD_TYPES


def _emoji_matches(emoji: object, names: Iterable[str]) -> bool:
    wanted = set(names)
    if str(emoji) in wanted:
        return True
    return getattr(emoji, "name", None) in wanted


async def _fetch_starter_message(thread: discord.Thread) -> discord.Message | None:
    starter = getattr(thread, "starter_message", None)
    if starter is not None:
        return starter
    # Forum posts share their id with the opening message
    try:
        return await thread.fetch_message(thread.id)
    except discord.NotFound:
        return None


async def _owner_reacted(thread: discord.Thread, emoji_names: tuple[str, ...]) -> bool:
    starter = await _fetch_starter_message(thread)
    if starter is None:
        return False
    for reaction in starter.reactions:
        if not _emoji_matches(reaction.emoji, emoji_names):
            continue
        async for user in reaction.users():
            if user.id == thread.owner_id:
                return True
    return False


async def has_owner_opted_out(
    thread: discord.Thread,
    emoji_names: tuple[str, ...],
    *,
    timeout: float | None = None,
) -> bool:
    """Check whether the thread owner reacted to the opening post with an opt-out emoji.

    Reactions from anyone other than the owner are ignored. If the starter
    message or its reactors cannot be read the thread stays included.
    """
    if thread.owner_id is None:
        return False
    try:
        return await asyncio.wait_for(_owner_reacted(thread, emoji_names), timeout)
    except (discord.HTTPException, asyncio.TimeoutError) as e:
        _LOG.error("Failed to check reactions for thread %s: %s", thread.id, e)
        return False
