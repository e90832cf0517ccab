"""Structured streaming: turn a text stream into partial pydantic snapshots.

The provider streams raw JSON text. After every chunk the accumulated text is
parsed leniently (incomplete trailing values are dropped) and validated
against the schema; each snapshot that validates and differs from the last
one is yielded. The final value of a call is simply the last snapshot, so
callers fold the sequence with "last write wins".
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import TypeVar

from pydantic import BaseModel, ValidationError
from pydantic_core import from_json

from taxonomist.exceptions import SchemaMismatchError
from taxonomist.llm.base import LLMProvider, Message

logger = logging.getLogger("taxonomist.structured")

T = TypeVar("T", bound=BaseModel)

_FENCES = ("```json", "```JSON", "```")


def format_instructions(schema: type[BaseModel]) -> str:
    """Instructions appended to the system prompt describing the output format."""
    return (
        "Respond with a single JSON object and nothing else. "
        "It must conform to this JSON schema:\n"
        f"{json.dumps(schema.model_json_schema(), separators=(',', ':'))}"
    )


def with_format_instructions(messages: list[Message], schema: type[BaseModel]) -> list[Message]:
    """Attach output-format instructions to the first system message (or add one)."""
    instructions = format_instructions(schema)
    result = list(messages)
    for i, msg in enumerate(result):
        if msg.role == "system":
            result[i] = msg.model_copy(update={"content": f"{msg.content}\n\n{instructions}"})
            return result
    return [Message(role="system", content=instructions), *result]


def strip_non_json(text: str) -> str:
    """Remove code fences and any prose before the first ``{``."""
    cleaned = text
    for fence in _FENCES:
        cleaned = cleaned.replace(fence, "")
    cleaned = cleaned.strip()
    first = cleaned.find("{")
    if first < 0:
        return ""
    last = cleaned.rfind("}")
    if last > first:
        # Keep anything after the last brace only while the object is still open
        tail = cleaned[last + 1 :].strip()
        if not tail:
            return cleaned[first : last + 1]
    return cleaned[first:]


def parse_partial(text: str, schema: type[T]) -> T | None:
    """Parse possibly incomplete JSON into ``schema``; None if it does not validate yet."""
    candidate = strip_non_json(text)
    if not candidate:
        return None
    try:
        data = from_json(candidate, allow_partial=True)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    try:
        return schema.model_validate(data)
    except ValidationError:
        return None


async def stream_structured(
    provider: LLMProvider,
    schema: type[T],
    messages: list[Message],
    max_output_tokens: int = 2048,
    model: str | None = None,
    temperature: float = 0.0,
) -> AsyncIterator[T]:
    """Stream partial ``schema`` snapshots for one inference call.

    Raises:
        SchemaMismatchError: If the completed response never validated.
    """
    prompt = with_format_instructions(messages, schema)
    buffer = ""
    last: T | None = None

    async for chunk in provider.stream(
        prompt, temperature=temperature, max_tokens=max_output_tokens, model=model
    ):
        buffer += chunk
        snapshot = parse_partial(buffer, schema)
        if snapshot is None or snapshot == last:
            continue
        last = snapshot
        yield snapshot

    final = _parse_complete(buffer, schema)
    if final is None:
        if last is None:
            raise SchemaMismatchError(
                f"Response did not match {schema.__name__}: {buffer[:200]!r}"
            )
        logger.warning(f"Incomplete {schema.__name__} response; keeping last partial snapshot")
        return
    if final != last:
        yield final


def _parse_complete(text: str, schema: type[T]) -> T | None:
    candidate = strip_non_json(text)
    if not candidate:
        return None
    try:
        return schema.model_validate_json(candidate)
    except ValidationError:
        return None
