"""Posting the rollup digest as batches of embeds."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone

import discord

from .mentions import mentionize_summary

_LOG = logging.getLogger(__name__)

EMBED_COLOR = 0x0099FF
DESCRIPTION_LIMIT = 4096
FIELD_LIMIT = 1024
EMBEDS_PER_MESSAGE = 10

PUBLISHABLE_CHANNEL_TYPES = frozenset({discord.ChannelType.text, discord.ChannelType.news})


@dataclass
class RollupItem:
    """One thread's summarized delta, staged for publication."""

    thread_id: int
    thread_name: str
    url: str
    summary: str
    author_mention: str | None = None
    mentions: list[str] = field(default_factory=list)
    user_map: dict[str, int] = field(default_factory=dict)  # lowercased username -> user id
    key_points: list[str] = field(default_factory=list)
    contributors: list[str] = field(default_factory=list)


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to at most ``limit`` characters, ending with an ellipsis if cut."""
    if not text or len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def build_project_embed(item: RollupItem, *, now: datetime | None = None) -> discord.Embed:
    """Build the display card for one digest item."""
    description = truncate(mentionize_summary(item.summary or "", item.user_map), DESCRIPTION_LIMIT)
    embed = discord.Embed(
        title=item.thread_name or "Project Update",
        description=description,
        color=EMBED_COLOR,
        timestamp=now or datetime.now(timezone.utc),
    )
    embed.add_field(name="Project", value=f"<#{item.thread_id}>", inline=True)
    if item.author_mention:
        embed.add_field(name="Author", value=item.author_mention, inline=True)
    if item.key_points:
        value = truncate("\n".join(f"• {k}" for k in item.key_points), FIELD_LIMIT)
        if value:
            embed.add_field(name="Key Points", value=value, inline=False)
    if item.contributors:
        value = truncate(", ".join(item.contributors), FIELD_LIMIT)
        if value:
            embed.add_field(name="Contributors", value=value, inline=True)
    return embed


async def resolve_channel(bot, channel_id: int):
    """Resolve a channel by ID, attempting cache first then fetch."""
    channel = bot.get_channel(channel_id)
    if channel is not None:
        return channel
    with suppress(discord.NotFound, discord.Forbidden, discord.HTTPException):
        return await bot.fetch_channel(channel_id)
    return None


def is_publishable(channel) -> bool:
    """Digest cards only go to plain text or announcement channels."""
    return channel is not None and getattr(channel, "type", None) in PUBLISHABLE_CHANNEL_TYPES


async def publish_rollup(
    bot,
    channel_id: int,
    items: list[RollupItem],
    *,
    timeout: float | None = None,
) -> int:
    """Send the digest to a channel, EMBEDS_PER_MESSAGE cards per message.

    Returns the number of messages that were sent. A failed batch is logged
    and the remaining batches are still attempted.
    """
    if not items:
        return 0

    channel = await resolve_channel(bot, channel_id)
    if not is_publishable(channel):
        _LOG.error("Rollup channel %s is not a text or announcement channel", channel_id)
        return 0

    now = datetime.now(timezone.utc)
    embeds = [build_project_embed(item, now=now) for item in items]
    sent = 0
    for start in range(0, len(embeds), EMBEDS_PER_MESSAGE):
        batch = embeds[start : start + EMBEDS_PER_MESSAGE]
        try:
            await asyncio.wait_for(channel.send(embeds=batch), timeout)
        except (discord.HTTPException, asyncio.TimeoutError) as e:
            _LOG.error(
                "Failed to send rollup batch %d-%d to channel %s: %s",
                start + 1,
                start + len(batch),
                channel_id,
                e,
            )
            continue
        sent += 1

    _LOG.info("Posted %d rollup item(s) in %d message(s) to channel %s", len(items), sent, channel_id)
    return sent
