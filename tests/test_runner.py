"""End-to-end tests for a rollup run against fake Discord objects."""

import asyncio
import sqlite3
from datetime import timedelta

import discord
import pytest

from discord_fakes import (
    BASE_TIME,
    DummyLLM,
    FakeBot,
    FakeChannel,
    FakeForum,
    FakeMessage,
    FakeReaction,
    FakeThread,
    FakeUser,
)
from rollupbot.rollup.runner import ProjectRollup, thread_url
from rollupbot.rollup.summarizer import Summarizer
from rollupbot.settings import RollupSettings

OWNER = FakeUser(7, "owner")
ALICE = FakeUser(11, "alice")
BOB = FakeUser(12, "bob")
HELPER = FakeUser(99, "helper-bot", bot=True)


def _world(*threads, general_type=discord.ChannelType.text):
    forum = FakeForum(1, active=list(threads))
    general = FakeChannel(2, type=general_type)
    manual = FakeChannel(3)
    return FakeBot(forum, general, manual), general, manual


def _rollup(bot, settings, store, llm):
    return ProjectRollup(bot, settings, store, Summarizer(llm, timeout=settings.call_timeout))


def _t1() -> FakeThread:
    return FakeThread(
        100,
        "Parser rewrite",
        owner_id=OWNER.id,
        messages=[
            FakeMessage(101, ALICE, "Finished the lexer"),
            FakeMessage(102, BOB, "Reviewed the lexer"),
            FakeMessage(103, ALICE, "Started on the parser"),
        ],
    )


@pytest.mark.asyncio
async def test_first_run_summarizes_and_advances_cursor(settings, store, dummy_llm):
    thread = _t1()
    bot, general, _ = _world(thread)
    rollup = _rollup(bot, settings, store, dummy_llm)

    items = await rollup.run()

    assert len(items) == 1
    item = items[0]
    assert item.thread_id == 100
    assert item.summary == "Summary #1"
    assert item.author_mention == "<@7>"
    assert item.mentions == ["<@11>", "<@12>"]
    assert item.user_map == {"alice": 11, "bob": 12}
    assert item.contributors == ["alice", "bob"]
    assert item.url == "https://discord.com/channels/500/1/100"

    state = store.get(100)
    assert state.last_seen_message_id == 103
    assert state.memory.summary == "Summary #1"
    assert len(general.sent) == 1

    prompt = dummy_llm.last_user_prompt
    assert "Thread: Parser rewrite" in prompt
    assert prompt.index("Finished the lexer") < prompt.index("Started on the parser")


@pytest.mark.asyncio
async def test_second_run_without_new_messages_does_nothing(settings, store, dummy_llm):
    thread = _t1()
    bot, general, _ = _world(thread)
    rollup = _rollup(bot, settings, store, dummy_llm)

    await rollup.run()
    before = store.get(100)
    items = await rollup.run()

    assert items == []
    assert dummy_llm.call_count == 1
    after = store.get(100)
    assert after.last_seen_message_id == 103
    assert after.updated_at == before.updated_at
    assert len(general.sent) == 1


@pytest.mark.asyncio
async def test_next_run_only_sees_new_messages_and_prior_memory(settings, store, dummy_llm):
    thread = _t1()
    bot, _, _ = _world(thread)
    rollup = _rollup(bot, settings, store, dummy_llm)

    await rollup.run()
    thread.add(FakeMessage(104, ALICE, "Parser handles expressions"))
    items = await rollup.run()

    assert len(items) == 1
    prompt = dummy_llm.last_user_prompt
    assert "Parser handles expressions" in prompt
    assert "Finished the lexer" not in prompt
    assert "Prior memory summary: Summary #1" in prompt
    assert store.get(100).last_seen_message_id == 104
    assert thread.history_calls[-1]["after"].id == 103


@pytest.mark.asyncio
async def test_manual_window_posts_to_target_without_moving_cursor(settings, store, dummy_llm):
    thread = _t1()
    bot, general, manual = _world(thread)
    rollup = _rollup(bot, settings, store, dummy_llm)

    items = await rollup.run(cutoff=BASE_TIME + timedelta(minutes=102), post_channel_id=3)

    assert len(items) == 1
    assert "Finished the lexer" not in dummy_llm.last_user_prompt
    assert len(manual.sent) == 1
    assert general.sent == []
    state = store.get(100)
    assert state.last_seen_message_id is None
    assert state.memory.summary == "Summary #1"


@pytest.mark.asyncio
async def test_manual_window_can_opt_into_advancing(settings, store, dummy_llm):
    bot, _, _ = _world(_t1())
    rollup = _rollup(bot, settings, store, dummy_llm)

    await rollup.run(cutoff=BASE_TIME, post_channel_id=3, update_last_seen=True)

    assert store.get(100).last_seen_message_id == 103


@pytest.mark.asyncio
async def test_owner_opt_out_excludes_thread(settings, store, dummy_llm):
    opted_out = _t1()
    starter = FakeMessage(100, OWNER, "My project")
    starter.reactions.append(FakeReaction("📵", [OWNER]))
    opted_out.starter_message = starter

    bystander = FakeThread(200, "Game jam", owner_id=OWNER.id, messages=[FakeMessage(201, BOB, "Art done")])
    other_starter = FakeMessage(200, OWNER, "Jam")
    other_starter.reactions.append(FakeReaction("📵", [ALICE]))
    bystander.starter_message = other_starter

    bot, _, _ = _world(opted_out, bystander)
    items = await _rollup(bot, settings, store, dummy_llm).run()

    assert [i.thread_id for i in items] == [200]
    assert store.get(100) is None


@pytest.mark.asyncio
async def test_bot_only_window_skips_summarization(settings, store, dummy_llm):
    thread = FakeThread(100, messages=[FakeMessage(101, HELPER, "Reminder: post updates")])
    bot, general, _ = _world(thread)

    items = await _rollup(bot, settings, store, dummy_llm).run()

    assert items == []
    assert dummy_llm.call_count == 0
    state = store.get(100)
    assert state.last_seen_message_id == 101
    assert state.memory is None
    assert general.sent == []


@pytest.mark.asyncio
async def test_full_page_of_bot_posts_does_not_hide_later_updates(settings, store, dummy_llm):
    state = store.get_or_create(100, "Parser rewrite")
    store.commit(state, 1, "Set up the repo", advance_cursor=True)
    messages = [FakeMessage(i, HELPER, f"ping {i}") for i in range(2, 102)]
    messages.append(FakeMessage(200, ALICE, "Parser handles expressions"))
    thread = FakeThread(100, "Parser rewrite", messages=messages)
    bot, _, _ = _world(thread)
    rollup = _rollup(bot, settings, store, dummy_llm)

    results = [len(await rollup.run()) for _ in range(3)]

    assert results == [0, 1, 0]
    assert dummy_llm.call_count == 1
    assert "Parser handles expressions" in dummy_llm.last_user_prompt
    assert "Prior memory summary: Set up the repo" in dummy_llm.last_user_prompt
    assert store.get(100).last_seen_message_id == 200


@pytest.mark.asyncio
async def test_bot_only_manual_window_leaves_cursor_alone(settings, store, dummy_llm):
    thread = FakeThread(100, messages=[FakeMessage(101, HELPER, "Reminder: post updates")])
    bot, _, _ = _world(thread)

    await _rollup(bot, settings, store, dummy_llm).run(cutoff=BASE_TIME, post_channel_id=3)

    assert store.get(100).last_seen_message_id is None


@pytest.mark.asyncio
async def test_failed_summary_leaves_checkpoint_alone(settings, store):
    llm = DummyLLM(reply="")
    bot, _, _ = _world(_t1())

    items = await _rollup(bot, settings, store, llm).run()

    assert items == []
    assert store.get(100).last_seen_message_id is None


@pytest.mark.asyncio
async def test_broken_thread_does_not_stop_the_run(settings, store, dummy_llm):
    broken = FakeThread(100, history_error=RuntimeError("unexpected"))
    healthy = FakeThread(200, "Game jam", messages=[FakeMessage(201, BOB, "Art done")])
    bot, general, _ = _world(broken, healthy)

    items = await _rollup(bot, settings, store, dummy_llm).run()

    assert [i.thread_id for i in items] == [200]
    assert len(general.sent) == 1


@pytest.mark.asyncio
async def test_ineligible_threads_are_skipped(settings, store, dummy_llm):
    odd = FakeThread(100, type=discord.ChannelType.text, messages=[FakeMessage(101, BOB, "hi")])
    bot, _, _ = _world(odd)

    assert await _rollup(bot, settings, store, dummy_llm).run() == []
    assert store.get(100) is None


@pytest.mark.asyncio
async def test_checkpoint_insert_failure_falls_back_without_advancing(settings, store, dummy_llm, monkeypatch):
    def _fail(thread_id, thread_name):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(store, "get_or_create", _fail)
    thread = _t1()
    bot, _, _ = _world(thread)

    items = await _rollup(bot, settings, store, dummy_llm).run()

    assert len(items) == 1
    assert thread.history_calls[0]["after"] is None
    assert store.get(100) is None


@pytest.mark.asyncio
async def test_missing_configuration_aborts_quietly(store, dummy_llm):
    bot, general, _ = _world(_t1())
    unconfigured = RollupSettings(forum_channel_id=1, general_channel_id=2, openai_api_key=None)

    assert await _rollup(bot, unconfigured, store, dummy_llm).run() == []
    assert dummy_llm.call_count == 0
    assert general.sent == []


@pytest.mark.asyncio
async def test_unusable_target_aborts_before_touching_checkpoints(settings, store, dummy_llm):
    bot, _, _ = _world(_t1(), general_type=discord.ChannelType.voice)

    assert await _rollup(bot, settings, store, dummy_llm).run() == []
    assert dummy_llm.call_count == 0
    assert store.get(100) is None


@pytest.mark.asyncio
async def test_non_forum_container_aborts(settings, store, dummy_llm):
    forum = FakeForum(1, active=[_t1()])
    forum.type = discord.ChannelType.text
    bot = FakeBot(forum, FakeChannel(2))

    assert await _rollup(bot, settings, store, dummy_llm).run() == []


@pytest.mark.asyncio
async def test_concurrent_triggers_are_serialized(settings, store, dummy_llm):
    bot, general, _ = _world(_t1())
    rollup = _rollup(bot, settings, store, dummy_llm)

    first, second = await asyncio.gather(rollup.run(), rollup.run())

    assert len(first) + len(second) == 1
    assert dummy_llm.call_count == 1
    assert not rollup.running


@pytest.mark.asyncio
async def test_publish_failure_is_swallowed(settings, store, dummy_llm):
    bot, general, _ = _world(_t1())
    general._fail_on_send = {1}

    items = await _rollup(bot, settings, store, dummy_llm).run()

    assert len(items) == 1
    assert general.sent == []


def test_thread_url_without_guild():
    assert thread_url(FakeThread(100, guild_id=None)) == "https://discord.com/channels/@me/100"


def test_from_settings_builds_openai_generator(settings, store):
    rollup = ProjectRollup.from_settings(FakeBot(), settings, store)

    assert rollup.summarizer.llm.model == settings.model
    assert rollup.summarizer.temperature == 0.2


def test_from_settings_without_key_has_no_generator(store):
    rollup = ProjectRollup.from_settings(FakeBot(), RollupSettings(), store)
    assert rollup.summarizer.llm is None
