from __future__ import annotations

from abc import ABC, abstractmethod


class TextGenerationError(RuntimeError):
    """Raised when a provider call fails or returns something unusable."""


class TextGeneratorAPI(ABC):
    """Abstract base class for text generator providers."""

    @abstractmethod
    async def generate(self, prompt, *, temperature: float = 1.0) -> str:
        """Return generated text for the given prompt."""
        raise NotImplementedError
