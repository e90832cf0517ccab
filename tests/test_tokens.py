"""Tests for token estimation and head+tail slicing."""

from __future__ import annotations

import pytest

from taxonomist.budget.tokens import (
    TRUNCATION_MARKER,
    count_words,
    estimate_message_tokens,
    estimate_tokens,
    estimate_tokens_from_words,
    head_tail_slice,
)
from taxonomist.llm.base import Message


class TestEstimateTokens:
    def test_empty(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens(None) == 0

    def test_ceiling_of_quarter_length(self):
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("x" * 400) == 100

    def test_monotonic(self):
        sizes = [estimate_tokens("y" * n) for n in range(0, 200)]
        assert sizes == sorted(sizes)

    def test_words(self):
        assert count_words("  one two\nthree ") == 3
        assert count_words(None) == 0
        assert estimate_tokens_from_words(10) == 13

    def test_message_tokens_include_framing(self):
        messages = [Message(role="system", content="x" * 40), Message(role="user", content="")]
        # (4 + 10) + (4 + 0) = 18, times 1.1
        assert estimate_message_tokens(messages) == 20


class TestHeadTailSlice:
    def test_short_text_unchanged(self):
        text = "short text"
        assert head_tail_slice(text, 100) == text

    def test_empty_unchanged(self):
        assert head_tail_slice("", 10) == ""

    def test_long_text_has_marker(self):
        text = "start " + "word " * 2000 + "finish"
        result = head_tail_slice(text, 100)
        assert TRUNCATION_MARKER in result
        assert result.startswith("start")
        assert len(result) < len(text)

    @pytest.mark.parametrize("budget", [0, 1, 10, 50, 200, 1000])
    def test_never_grows(self, budget: int):
        text = "The quick brown fox. " * 300
        result = head_tail_slice(text, budget)
        assert estimate_tokens(result) <= estimate_tokens(text)
        if estimate_tokens(text) > budget:
            assert TRUNCATION_MARKER in result

    def test_head_ratio_controls_split(self):
        text = "a" * 4000 + "b" * 4000
        result = head_tail_slice(text, 200, head_ratio=0.75)
        head, tail = result.split(TRUNCATION_MARKER)
        assert len(head) > len(tail)
        assert set(head) == {"a"}
        assert set(tail) == {"b"}

    def test_tiny_budget_clamped_to_floors(self):
        text = "z" * 5000
        head, tail = head_tail_slice(text, 1).split(TRUNCATION_MARKER)
        # Floors: 32 usable tokens, head at least 16 tokens
        assert len(head) >= 16 * 4
        assert len(tail) >= 8 * 4

    def test_tail_cut_at_sentence_boundary(self):
        text = "x" * 3000 + " Tail starts here. Then a dangling fragm"
        result = head_tail_slice(text, 100)
        assert result.endswith(".")
        assert "dangling" not in result.split(TRUNCATION_MARKER)[1]

    def test_multiline_tail_left_alone(self):
        text = "x" * 3000 + "\nline one. line two\nend"
        result = head_tail_slice(text, 100)
        assert result.endswith("end")

    def test_text_barely_longer_than_marker(self):
        text = "q" * (len(TRUNCATION_MARKER) + 1)
        assert head_tail_slice(text, 1) == text

    def test_short_text_over_budget_is_scaled(self):
        text = "0123456789" * 10
        result = head_tail_slice(text, 10)
        assert TRUNCATION_MARKER in result
        assert len(result) <= len(text)
