"""Fit a message list inside an input-token ceiling.

Data-bearing (user) messages are shrunk first, instructions last. Messages are
never dropped, only their text is head+tail sliced.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from taxonomist.budget.tokens import estimate_tokens, head_tail_slice
from taxonomist.llm.base import Message

logger = logging.getLogger("taxonomist.fitter")

JSON_OVERHEAD = 300
MIN_MESSAGE_TOKENS = 512
# Share of the remaining room one message may take, leaving some for the rest
ROOM_SHARE = 0.6

_ROLE_PRIORITY = {"user": 0, "system": 1}


@dataclass
class FitResult:
    """Outcome of fitting: the (possibly shrunk) messages and whether anything changed."""

    messages: list[Message]
    trimmed: bool


def _trim_priority(role: str) -> int:
    return _ROLE_PRIORITY.get(role, 2)


def fit_messages(
    messages: list[Message],
    max_input_tokens: int,
    overhead_tokens: int = JSON_OVERHEAD,
) -> FitResult:
    """Shrink message contents until the estimated total fits ``max_input_tokens``.

    Candidates are visited by role priority (user, then system, then anything
    else) and, within a role, largest first; remaining ties keep the original
    order. Each candidate is sliced to a share of the room left for it and the
    running total is updated before moving on. Fitting stops as soon as the
    total is within budget, so fitting an already fitted list is a no-op.
    """
    counts = [estimate_tokens(m.content) for m in messages]
    total = sum(counts) + overhead_tokens
    if total <= max_input_tokens:
        return FitResult(messages=messages, trimmed=False)

    order = sorted(
        range(len(messages)),
        key=lambda i: (_trim_priority(messages[i].role), -counts[i], i),
    )

    fitted = [m.model_copy() for m in messages]
    trimmed = False
    for i in order:
        if total <= max_input_tokens:
            break
        current = counts[i]
        available = max_input_tokens - (total - current)
        target = max(MIN_MESSAGE_TOKENS, math.floor(available * ROOM_SHARE))
        shortened = head_tail_slice(fitted[i].content, target)
        if shortened == fitted[i].content:
            continue

        fitted[i] = fitted[i].model_copy(update={"content": shortened})
        trimmed = True
        counts[i] = estimate_tokens(shortened)
        total = total - current + counts[i]
        logger.debug(
            f"Trimmed {fitted[i].role} message #{i}: {current} -> {counts[i]} tokens "
            f"(total {total}/{max_input_tokens})"
        )

    if total > max_input_tokens:
        logger.debug(f"Messages still over budget after fitting: {total}/{max_input_tokens}")
    return FitResult(messages=fitted, trimmed=trimmed)
