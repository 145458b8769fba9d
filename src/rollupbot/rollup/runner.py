"""Project rollup run: discover threads, summarize what is new, post a digest."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime

import discord

from rollupbot.settings import RollupSettings
from rollupbot.text_generators import OpenAIChatTextGenerator

from .discovery import fetch_all_threads, has_owner_opted_out, is_eligible_thread
from .fetcher import fetch_messages_since, fetch_new_messages
from .publisher import RollupItem, is_publishable, publish_rollup, resolve_channel
from .summarizer import PreparedMessage, Summarizer, build_prompt, prepare_window
from .thread_state import CheckpointStore, ThreadMemory, ThreadState

_LOG = logging.getLogger(__name__)


def thread_url(thread: discord.Thread) -> str:
    guild = getattr(thread, "guild", None)
    if guild is None:
        return f"https://discord.com/channels/@me/{thread.id}"
    parent_id = thread.parent_id or thread.id
    return f"https://discord.com/channels/{guild.id}/{parent_id}/{thread.id}"


def _distinct(values):
    seen = set()
    out = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


class ProjectRollup:
    """Runs the project forum rollup.

    Runs are serialized: a manual run started while the daily run is in
    progress waits for it to finish. Threads are handled one at a time and an
    error in one thread never stops the others.
    """

    def __init__(
        self,
        bot,
        settings: RollupSettings,
        store: CheckpointStore,
        summarizer: Summarizer,
    ) -> None:
        self.bot = bot
        self.settings = settings
        self.store = store
        self.summarizer = summarizer
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        bot,
        settings: RollupSettings,
        store: CheckpointStore | None = None,
    ) -> ProjectRollup:
        llm = None
        if settings.openai_api_key:
            llm = OpenAIChatTextGenerator(
                settings.model,
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=settings.call_timeout,
            )
        summarizer = Summarizer(llm, temperature=settings.temperature, timeout=settings.call_timeout)
        return cls(bot, settings, store or CheckpointStore(), summarizer)

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(
        self,
        *,
        cutoff: datetime | None = None,
        post_channel_id: int | None = None,
        update_last_seen: bool | None = None,
    ) -> list[RollupItem]:
        """Run one rollup and return the items that were staged for posting.

        Args:
            cutoff: Summarize messages created since this time instead of
                since each thread's cursor.
            post_channel_id: Channel to post in; defaults to the general channel.
            update_last_seen: Whether to advance thread cursors. Defaults to
                True for cursor runs and False when ``cutoff`` is given.
        """
        async with self._lock:
            return await self._run(cutoff, post_channel_id, update_last_seen)

    async def _run(
        self,
        cutoff: datetime | None,
        post_channel_id: int | None,
        update_last_seen: bool | None,
    ) -> list[RollupItem]:
        missing = self.settings.missing(explicit_target=post_channel_id is not None)
        if missing:
            _LOG.error("Project rollup is not configured; missing %s", ", ".join(missing))
            return []

        target_id = post_channel_id if post_channel_id is not None else self.settings.general_channel_id
        advance = update_last_seen if update_last_seen is not None else cutoff is None

        forum = await self._get_forum()
        if forum is None:
            return []

        # Checking the target up front keeps cursors still when nothing could be posted
        target = await resolve_channel(self.bot, target_id)
        if not is_publishable(target):
            _LOG.error("Rollup channel %s is not a text or announcement channel", target_id)
            return []

        threads = await fetch_all_threads(forum, timeout=self.settings.call_timeout)
        _LOG.info(
            "Project rollup starting: %d thread(s), mode=%s, advance_cursor=%s",
            len(threads),
            "since" if cutoff is not None else "cursor",
            advance,
        )

        items: list[RollupItem] = []
        for thread in threads:
            try:
                item = await self._process_thread(thread, cutoff=cutoff, advance=advance)
            except Exception:  # noqa: BLE001
                _LOG.exception("Failed to roll up thread %s", getattr(thread, "id", "?"))
                continue
            if item is not None:
                items.append(item)

        try:
            await publish_rollup(self.bot, target_id, items, timeout=self.settings.call_timeout)
        except Exception:  # noqa: BLE001
            _LOG.exception("Failed to publish project rollup to channel %s", target_id)

        _LOG.info("Project rollup finished: %d item(s)", len(items))
        return items

    async def _get_forum(self):
        forum_id = self.settings.forum_channel_id
        channel = await resolve_channel(self.bot, forum_id)
        if channel is None:
            _LOG.error("Failed to fetch forum channel %s", forum_id)
            return None
        if getattr(channel, "type", None) != discord.ChannelType.forum:
            _LOG.error("Channel %s is not a forum channel.", forum_id)
            return None
        return channel

    def _load_state(self, thread: discord.Thread, name: str) -> ThreadState:
        try:
            return self.store.get_or_create(thread.id, name)
        except sqlite3.Error as e:
            _LOG.error("Failed to load checkpoint for thread %s; using a temporary one: %s", thread.id, e)
            return ThreadState.transient(thread.id, name)

    async def _process_thread(
        self,
        thread: discord.Thread,
        *,
        cutoff: datetime | None,
        advance: bool,
    ) -> RollupItem | None:
        if not is_eligible_thread(thread):
            return None
        if await has_owner_opted_out(
            thread, self.settings.opt_out_emoji, timeout=self.settings.call_timeout
        ):
            _LOG.info("Skipping thread %s: owner opted out of rollups", thread.id)
            return None

        name = thread.name or "Untitled"
        state = self._load_state(thread, name)

        if cutoff is not None:
            messages = await fetch_messages_since(thread, cutoff, timeout=self.settings.call_timeout)
        else:
            messages = await fetch_new_messages(
                thread, state.last_seen_message_id, timeout=self.settings.call_timeout
            )
        if not messages:
            return None

        window = prepare_window(messages)
        if not window:
            # Nothing to summarize, but the cursor still has to get past these
            if advance and state.persisted:
                self.store.skip_to(state, max(m.id for m in messages))
            return None

        prompt = build_prompt(name, state.memory, window)
        summary = await self.summarizer.summarize(prompt)
        if not summary:
            _LOG.warning("No summary produced for thread %s; will retry next run", thread.id)
            return None

        item = self._build_item(thread, name, summary, window)

        if state.persisted:
            newest = max(messages, key=lambda m: m.id)
            self.store.commit(
                state,
                newest.id,
                summary,
                advance_cursor=advance,
                thread_name=name,
                memory=ThreadMemory(
                    summary=summary,
                    key_points=list(item.key_points),
                    contributors=_distinct(m.author for m in window),
                    last_active_at=newest.created_at.isoformat(),
                ),
            )
        return item

    def _build_item(
        self,
        thread: discord.Thread,
        name: str,
        summary: str,
        window: list[PreparedMessage],
    ) -> RollupItem:
        author_ids = _distinct(m.author_id for m in window if m.author_id is not None)
        authors = _distinct(m.author for m in window)
        user_map = {m.author.lower(): m.author_id for m in window if m.author and m.author_id is not None}
        return RollupItem(
            thread_id=thread.id,
            thread_name=name,
            url=thread_url(thread),
            summary=summary,
            author_mention=f"<@{thread.owner_id}>" if thread.owner_id else None,
            mentions=[f"<@{uid}>" for uid in author_ids],
            user_map=user_map,
            contributors=authors if len(authors) > 1 else [],
        )
