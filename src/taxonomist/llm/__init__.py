"""LLM provider abstraction layer."""

from taxonomist.llm.base import LLMProvider, Message
from taxonomist.llm.factory import create_provider

__all__ = [
    "LLMProvider",
    "Message",
    "create_provider",
]
