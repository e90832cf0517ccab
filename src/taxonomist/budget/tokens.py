"""Token estimation and head+tail text truncation.

Estimates are a character-count approximation (~4 characters per token).
They are deterministic, monotonic in string length and much cheaper than a real
tokenizer, which is all budget arithmetic needs.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taxonomist.llm.base import Message

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "\n\n[...content truncated...]\n\n"

# Tokens reserved for the marker, and floors that keep slices usable
MARKER_RESERVE = 8
MIN_AVAILABLE = 32
MIN_HEAD = 16
MIN_TAIL = 8

# Per-message framing cost used by estimate_message_tokens
MESSAGE_FRAMING = 4
FORMAT_OVERHEAD = 1.1

_SENTENCE_BREAK = re.compile(r"[.!?]\s")
_WORD_BREAK = re.compile(r"\s")


def estimate_tokens(text: str | None) -> int:
    """Estimate the token count of a string."""
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def head_tail_slice(text: str, max_tokens: int, head_ratio: float = 0.75) -> str:
    """Shrink ``text`` to roughly ``max_tokens`` keeping its head and tail.

    Text already within budget is returned unchanged. Otherwise the result is
    ``head + TRUNCATION_MARKER + tail`` and is never longer than the input.
    Text too short to hold the marker plus one character on each side is left
    as is.
    """
    if not text:
        return text
    if estimate_tokens(text) <= max_tokens:
        return text

    head_ratio = min(max(head_ratio, 0.0), 1.0)
    available = max(MIN_AVAILABLE, max_tokens - MARKER_RESERVE)
    head_tokens = max(MIN_HEAD, math.floor(available * head_ratio))
    tail_tokens = max(MIN_TAIL, available - head_tokens)

    head_chars = head_tokens * CHARS_PER_TOKEN
    tail_chars = tail_tokens * CHARS_PER_TOKEN

    room = len(text) - len(TRUNCATION_MARKER)
    if room < 2:
        return text
    if head_chars + tail_chars > room:
        # The floors outgrew a short text: scale both parts into the space left
        head_chars = min(room - 1, max(1, room * head_chars // (head_chars + tail_chars)))
        tail_chars = room - head_chars

    head = text[:head_chars]
    tail = _clean_tail(text[-tail_chars:])
    return f"{head.strip()}{TRUNCATION_MARKER}{tail.strip()}"


def _clean_tail(tail: str) -> str:
    """Cut a single-line tail at a sentence or word boundary when one is late enough."""
    if "\n" in tail:
        return tail
    sentence = _SENTENCE_BREAK.search(tail)
    if sentence and sentence.start() > len(tail) * 0.3:
        return tail[: sentence.start() + 1]
    word = _WORD_BREAK.search(tail)
    if word and word.start() > len(tail) * 0.5:
        return tail[: word.start()]
    return tail


def count_words(text: str | None) -> int:
    """Count whitespace-separated words."""
    return len((text or "").split())


def estimate_tokens_from_words(word_count: int) -> int:
    """Rough conversion at ~1.3 tokens per word."""
    return math.ceil(word_count * 1.3)


def estimate_message_tokens(messages: Iterable[Message]) -> int:
    """Estimate the prompt size of a message list, framing included."""
    total = 0
    for message in messages:
        total += MESSAGE_FRAMING + estimate_tokens(message.content)
    return math.ceil(total * FORMAT_OVERHEAD)
