"""Base LLM provider interface."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from pydantic import BaseModel

# Wording used by providers when a request is too large for the model
_OVERFLOW_PATTERN = re.compile(
    r"context window|context_length|length_exceeded|too large|maximum context"
    r"|token limit|prompt is too long",
    re.IGNORECASE,
)


class Message(BaseModel):
    """A message in the conversation."""

    role: str  # "system", "user", "assistant"
    content: str = ""


def is_overflow_message(text: str) -> bool:
    """True when an error message reads like a context/length overflow."""
    return bool(_OVERFLOW_PATTERN.search(text or ""))


class LLMProvider(ABC):
    """Abstract base for LLM providers."""

    def __init__(self, model: str, api_key: str | None = None, base_url: str | None = None) -> None:
        self.model = model
        self.api_key = api_key
        self.base_url = base_url

    @abstractmethod
    def stream(
        self,
        messages: list[Message],
        temperature: float = 0.0,
        max_tokens: int = 4096,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        """Stream a completion response as text chunks.

        Implementations raise ``ContextOverflowError`` when the service rejects
        the request as too long.
        """
        ...
