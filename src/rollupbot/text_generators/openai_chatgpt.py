# text_generators/openai_chatgpt.py
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TypedDict, Union

from openai import APIConnectionError, APIError, AsyncOpenAI, RateLimitError

from .base import TextGenerationError, TextGeneratorAPI

_CLIENT_CACHE: dict[tuple[str, str | None, float | None], AsyncOpenAI] = {}
_LOG = logging.getLogger(__name__)


class _Message(TypedDict):
    role: str
    content: str


class OpenAIChatTextGenerator(TextGeneratorAPI):
    """Text-generation backend for OpenAI chat completion models.

    Accepts either a single string or a list of {role, content} messages.
    Every provider failure, and any response without a completion, is raised
    as ``TextGenerationError`` so callers only need to handle one type.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout

    def _get_client(self) -> AsyncOpenAI:
        if not self.api_key:
            raise TextGenerationError("OPENAI_API_KEY is required for OpenAI summaries")
        key = (self.api_key, self.base_url, self.timeout)
        if key not in _CLIENT_CACHE:
            kwargs = {"api_key": self.api_key}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            if self.timeout:
                kwargs["timeout"] = self.timeout
            _CLIENT_CACHE[key] = AsyncOpenAI(**kwargs)
        return _CLIENT_CACHE[key]

    async def generate(
        self,
        prompt: Union[str, Sequence[_Message]],
        *,
        temperature: float = 1.0,
    ) -> str:
        # Normalize input into a list of messages
        if isinstance(prompt, str):
            messages: list[_Message] = [{"role": "user", "content": prompt}]
        elif isinstance(prompt, Sequence):
            if not all(isinstance(m, dict) and "role" in m and "content" in m for m in prompt):
                raise TypeError("Each message must be a dict with 'role' and 'content' keys")
            messages = list(prompt)  # type: ignore[arg-type]
        else:
            raise TypeError("prompt must be a string or a sequence of message dicts")

        client = self._get_client()

        _LOG.debug("OpenAI: generating with model=%s, messages=%d", self.model, len(messages))

        try:
            resp = await client.chat.completions.create(
                model=self.model,
                messages=messages,      # type: ignore[arg-type]
                temperature=temperature,
            )
        except RateLimitError as e:
            _LOG.warning("OpenAI rate limit hit for model %s: %s", self.model, e)
            raise TextGenerationError(f"rate limited: {e}") from e
        except APIConnectionError as e:
            _LOG.error("OpenAI connection error for model %s: %s", self.model, e)
            raise TextGenerationError(f"connection error: {e}") from e
        except APIError as e:
            _LOG.error(
                "OpenAI API error for model %s (status %s): %s",
                self.model,
                getattr(e, "status_code", "unknown"),
                e,
            )
            raise TextGenerationError(f"API error: {e}") from e

        try:
            content = resp.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise TextGenerationError(f"malformed completion response: {resp!r}") from e
        if not isinstance(content, str):
            raise TextGenerationError("completion response had no text content")

        return content.strip()
