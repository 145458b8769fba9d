# text_generators/__init__.py
from .base import TextGenerationError, TextGeneratorAPI
from .openai_chatgpt import OpenAIChatTextGenerator

__all__ = [
    "TextGenerationError",
    "TextGeneratorAPI",
    "OpenAIChatTextGenerator",
]
