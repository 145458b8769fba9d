"""Fetching the window of thread messages to summarize.

Two strategies:

- cursor mode reads strictly after the stored cursor (or bootstraps from the
  most recent messages for a thread that has never been summarized);
- bounded-scan mode pages backwards from the newest message until a cutoff
  time, independent of the stored cursor.

Both return messages oldest first and never raise on gateway errors; a thread
whose history cannot be read yields nothing and is retried on the next run.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

import discord

_LOG = logging.getLogger(__name__)

CURSOR_BATCH_LIMIT = 100
BOOTSTRAP_BATCH_LIMIT = 50
SCAN_PAGE_SIZE = 100
SCAN_MAX_PAGES = 10  # ~1000 messages


def _sort_key(message: discord.Message) -> tuple[datetime, int]:
    return (message.created_at, message.id)


async def _history_page(thread: discord.Thread, **kwargs) -> list[discord.Message]:
    return [m async for m in thread.history(**kwargs)]


async def fetch_new_messages(
    thread: discord.Thread,
    after_message_id: int | None = None,
    *,
    timeout: float | None = None,
) -> list[discord.Message]:
    """Return messages posted after ``after_message_id``, oldest first.

    Without a cursor the most recent ``BOOTSTRAP_BATCH_LIMIT`` messages are
    returned instead.
    """
    if after_message_id is not None:
        kwargs = {"after": discord.Object(id=after_message_id), "limit": CURSOR_BATCH_LIMIT}
    else:
        kwargs = {"limit": BOOTSTRAP_BATCH_LIMIT}

    try:
        messages = await asyncio.wait_for(_history_page(thread, **kwargs), timeout)
    except (discord.HTTPException, asyncio.TimeoutError) as e:
        _LOG.error("Failed to fetch messages for thread %s: %s", thread.id, e)
        return []

    if after_message_id is not None:
        messages = [m for m in messages if m.id > after_message_id]
    return sorted(messages, key=_sort_key)


async def fetch_messages_since(
    thread: discord.Thread,
    since: datetime,
    *,
    page_size: int = SCAN_PAGE_SIZE,
    max_pages: int = SCAN_MAX_PAGES,
    timeout: float | None = None,
) -> list[discord.Message]:
    """Return messages created at or after ``since``, oldest first.

    Pages backwards from the newest message. Stops when a page reaches past
    the cutoff, comes back empty, or after ``max_pages`` pages. A failing page
    ends the scan and whatever was collected so far is returned.
    """
    collected: dict[int, discord.Message] = {}
    before: int | None = None

    for _ in range(max_pages):
        kwargs: dict = {"limit": page_size}
        if before is not None:
            kwargs["before"] = discord.Object(id=before)
        try:
            batch = await asyncio.wait_for(_history_page(thread, **kwargs), timeout)
        except (discord.HTTPException, asyncio.TimeoutError) as e:
            _LOG.error("Failed to scan messages for thread %s: %s", thread.id, e)
            break
        if not batch:
            break

        for message in batch:
            if message.created_at >= since:
                collected[message.id] = message

        oldest = min(batch, key=_sort_key)
        if oldest.created_at < since:
            break
        before = oldest.id
    else:
        _LOG.info("Stopped scanning thread %s after %d pages", thread.id, max_pages)

    return sorted(collected.values(), key=_sort_key)
