"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from discord_fakes import DummyLLM
from rollupbot.rollup.thread_state import CheckpointStore
from rollupbot.settings import RollupSettings


@pytest.fixture
def temp_db(tmp_path):
    """Path of a fresh sqlite file."""
    return str(tmp_path / "rollup.db")


@pytest.fixture
def store(temp_db):
    """CheckpointStore backed by a temporary database."""
    return CheckpointStore(temp_db)


@pytest.fixture
def dummy_llm():
    return DummyLLM()


@pytest.fixture
def settings():
    """Fully configured settings: forum 1, general channel 2."""
    return RollupSettings(
        forum_channel_id=1,
        general_channel_id=2,
        openai_api_key="sk-test",
        call_timeout=5,
    )


@pytest.fixture
def mock_discord_ctx():
    """Create a mock Discord command context."""
    ctx = MagicMock()
    ctx.author = MagicMock()
    ctx.author.id = 111222333
    ctx.author.name = "TestUser"
    ctx.channel = MagicMock()
    ctx.channel.id = 123456789
    ctx.send = AsyncMock()
    ctx.reply = AsyncMock()
    return ctx
