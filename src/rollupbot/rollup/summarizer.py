"""Summary generation for thread deltas."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

import discord

from rollupbot.text_generators import TextGenerationError

from .thread_state import ThreadMemory

_LOG = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 1500
PRIOR_EXCERPT_CHARS = 300

SYSTEM_FRAMING = "You are a helpful assistant."


class LLMProtocol(Protocol):
    """Protocol for LLM interface."""

    async def generate(self, prompt, *, temperature: float = 1.0) -> str:
        """Generate text from a prompt."""
        ...


@dataclass(frozen=True)
class PreparedMessage:
    """One message as it appears in the summarization prompt."""

    author: str
    content: str
    author_id: int | None = None


def prepare_window(messages: Iterable[discord.Message]) -> list[PreparedMessage]:
    """Keep non-bot messages with text, truncating each to MAX_CONTENT_CHARS."""
    prepared: list[PreparedMessage] = []
    for message in messages:
        if message.author.bot:
            continue
        content = message.content or ""
        if not content.strip():
            continue
        prepared.append(
            PreparedMessage(
                author=message.author.name,
                content=content[:MAX_CONTENT_CHARS],
                author_id=message.author.id,
            )
        )
    return prepared


def _one_line(text: str, limit: int = PRIOR_EXCERPT_CHARS) -> str:
    line = " ".join(text.split())
    if len(line) > limit:
        line = line[: limit - 1].rstrip() + "…"
    return line


def build_prompt(
    thread_name: str,
    prior: ThreadMemory | None,
    messages: list[PreparedMessage],
) -> str:
    """
    Build the summarization prompt for a thread's new messages.

    Args:
        thread_name: Display name of the thread
        prior: Memory stored by the previous summary, if any
        messages: Chronological, already-filtered messages

    Returns:
        Formatted prompt for LLM
    """
    prior_text = f"Prior memory summary: {_one_line(prior.summary)}\n" if prior and prior.summary else ""
    body = "\n".join(f"- {m.author}: {m.content[:MAX_CONTENT_CHARS]}" for m in messages)

    distinct_authors = {m.author.lower() for m in messages}
    if len(distinct_authors) > 1:
        contributor_note = "- Several people contributed; attribute work to them by name where it is clear."
    else:
        contributor_note = (
            "- Only one person posted; describe the work as theirs and do not invent other contributors."
        )

    prompt = f"""You summarize progress updates for software projects concisely.
Thread: {thread_name}
{prior_text}
New messages (chronological):
{body}

Requirements:
- 1-3 sentences, crisp and specific about what progressed, decisions, blockers, and next steps.
{contributor_note}
- Avoid pleasantries, meta-chatter, and generic filler."""

    return prompt


class Summarizer:
    """Handles summary generation using an LLM."""

    def __init__(
        self,
        llm: LLMProtocol | None,
        *,
        temperature: float = 0.2,
        timeout: float | None = None,
    ):
        """
        Initialize summarizer.

        Args:
            llm: LLM instance that implements generate(); None when no
                credential is configured
            temperature: Sampling temperature passed on every call
            timeout: Seconds to wait for a completion before giving up
        """
        self.llm = llm
        self.temperature = temperature
        self.timeout = timeout

    async def summarize(self, prompt: str) -> str | None:
        """Return the summary text, or None if no usable summary was produced."""
        if self.llm is None:
            _LOG.error("No text generator configured; skipping AI summary")
            return None

        messages = [
            {"role": "system", "content": SYSTEM_FRAMING},
            {"role": "user", "content": prompt},
        ]
        try:
            text = await asyncio.wait_for(
                self.llm.generate(messages, temperature=self.temperature),
                self.timeout,
            )
        except TextGenerationError as e:
            _LOG.error("AI summary failed: %s", e)
            return None
        except asyncio.TimeoutError:
            _LOG.error("AI summary timed out after %ss", self.timeout)
            return None

        if not isinstance(text, str) or not text.strip():
            _LOG.warning("AI summary came back empty")
            return None
        return text.strip()
