"""Anthropic Claude LLM provider."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from taxonomist.exceptions import ContextOverflowError
from taxonomist.llm.base import LLMProvider, Message, is_overflow_message


class AnthropicProvider(LLMProvider):
    """Provider for Anthropic's Claude models."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-5-20250929",
        api_key: str | None = None,
        base_url: str | None = None,
    ) -> None:
        super().__init__(model, api_key, base_url)
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError:
                from taxonomist.exceptions import ProviderNotAvailableError
                raise ProviderNotAvailableError("anthropic", "anthropic")

            kwargs: dict[str, Any] = {}
            if self.api_key:
                kwargs["api_key"] = self.api_key
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = AsyncAnthropic(**kwargs)
        return self._client

    def _format_messages(self, messages: list[Message]) -> tuple[str, list[dict]]:
        """Convert our Message format to Anthropic's format.

        System messages are joined into the single system prompt Anthropic
        accepts. Returns (system_prompt, messages_list).
        """
        system_parts: list[str] = []
        result = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
                continue
            result.append({"role": msg.role, "content": msg.content})
        return "\n\n".join(system_parts), result

    def _request_kwargs(
        self, messages: list[Message], temperature: float, max_tokens: int, model: str | None
    ) -> dict[str, Any]:
        system, formatted_msgs = self._format_messages(messages)
        kwargs: dict[str, Any] = {
            "model": model or self.model,
            "messages": formatted_msgs,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system
        return kwargs

    async def stream(
        self,
        messages: list[Message],
        temperature: float = 0.0,
        max_tokens: int = 4096,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        client = self._get_client()
        kwargs = self._request_kwargs(messages, temperature, max_tokens, model)

        try:
            async with client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    yield text
        except Exception as e:
            if is_overflow_message(str(e)):
                raise ContextOverflowError(str(e)) from e
            raise
