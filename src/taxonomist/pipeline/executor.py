"""Resilient streaming executor and batch auto-shrink.

Only overflow errors are ever retried here. Anything else (transport errors,
schema mismatches, bugs) propagates on the first failure.

Retry ladder for one request, after the normal fit:

1. Halve every message's content, then refit to 60% of the input ceiling.
2. Replace the record payload field (``"body": "..."``) in user messages with
   a placeholder. If that changes nothing, halve again.

Once ``max_retries`` retries are spent the original error is re-raised.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import AsyncIterator, Callable
from typing import TypeVar

from pydantic import BaseModel

from taxonomist.budget.fitter import JSON_OVERHEAD, fit_messages
from taxonomist.budget.planner import BudgetPlanner
from taxonomist.exceptions import ContextOverflowError
from taxonomist.llm.base import LLMProvider, Message, is_overflow_message
from taxonomist.llm.structured import stream_structured

logger = logging.getLogger("taxonomist.executor")

T = TypeVar("T", bound=BaseModel)
Item = TypeVar("Item")
Snapshot = TypeVar("Snapshot")

RETRY_ROOM_SHARE = 0.6
PAYLOAD_PLACEHOLDER = "[omitted]"


def is_overflow_error(exc: BaseException) -> bool:
    """True for errors that mean "the request was too large"."""
    return isinstance(exc, ContextOverflowError) or is_overflow_message(str(exc))


def _size(messages: list[Message]) -> int:
    return sum(len(m.content) for m in messages)


class ResilientExecutor:
    """Runs one structured streaming call with bounded shrink-and-retry on overflow."""

    def __init__(
        self,
        provider: LLMProvider,
        planner: BudgetPlanner,
        max_retries: int = 2,
        payload_field: str = "body",
        overhead_tokens: int = JSON_OVERHEAD,
        temperature: float = 0.0,
    ) -> None:
        self.provider = provider
        self.planner = planner
        self.max_retries = max_retries
        self.overhead_tokens = overhead_tokens
        self.temperature = temperature
        self._payload = re.compile(
            rf'"{re.escape(payload_field)}"(\s*):(\s*)"(?:[^"\\]|\\.)*"'
        )
        self._replacement = rf'"{payload_field}"\1:\2"{PAYLOAD_PLACEHOLDER}"'

    async def stream(
        self,
        schema: type[T],
        messages: list[Message],
        reserve_output: int,
        model: str | None = None,
    ) -> AsyncIterator[T]:
        """Yield partial ``schema`` snapshots for the request.

        Retries happen only before the first snapshot is yielded; once the
        caller has seen output, a failure propagates as is.
        """
        model_id = model or self.provider.model
        plan = self.planner.plan_for(model_id, reserve_output)
        max_output = min(reserve_output, plan.max_output_tokens)
        current = messages
        attempt = 0

        while True:
            fitted = fit_messages(current, plan.max_input_tokens, self.overhead_tokens).messages
            yielded = False
            try:
                async for snapshot in stream_structured(
                    self.provider,
                    schema,
                    fitted,
                    max_output_tokens=max_output,
                    model=model,
                    temperature=self.temperature,
                ):
                    yielded = True
                    yield snapshot
                return
            except Exception as e:
                if yielded or not is_overflow_error(e) or attempt >= self.max_retries:
                    raise
                attempt += 1
                logger.warning(f"Context overflow attempt {attempt}/{self.max_retries}: {e}")
                current = self._shrink(fitted, attempt, plan.max_input_tokens)

    def _shrink(self, messages: list[Message], attempt: int, max_input: int) -> list[Message]:
        if attempt >= 2:
            stripped = self.strip_payload(messages)
            if _size(stripped) < _size(messages):
                return stripped
        return self.halve(messages, max_input)

    def halve(self, messages: list[Message], max_input: int) -> list[Message]:
        """Cut every message to half its length, then refit to a tighter ceiling."""
        halved = [m.model_copy(update={"content": m.content[: len(m.content) // 2]}) for m in messages]
        target = math.floor(max_input * RETRY_ROOM_SHARE)
        return fit_messages(halved, target, self.overhead_tokens).messages

    def strip_payload(self, messages: list[Message]) -> list[Message]:
        """Replace the record payload field in user messages with a placeholder."""
        result = []
        for m in messages:
            if m.role == "user":
                m = m.model_copy(update={"content": self._payload.sub(self._replacement, m.content)})
            result.append(m)
        return result


async def stream_with_auto_shrink(
    process_batch: Callable[[list[Item]], AsyncIterator[Snapshot]],
    batch: list[Item],
) -> AsyncIterator[tuple[list[Item], Snapshot]]:
    """Stream ``process_batch`` over ``batch``, bisecting on overflow.

    Groups are kept on an explicit stack. A group that overflows before
    producing any output is split in two halves, processed first half first.
    A single-item group that overflows re-raises. Yields ``(group, snapshot)``
    so callers can fold the last snapshot per group.
    """
    work = [list(batch)] if batch else []
    while work:
        group = work.pop()
        yielded = False
        try:
            async for snapshot in process_batch(group):
                yielded = True
                yield group, snapshot
        except Exception as e:
            if yielded or len(group) <= 1 or not is_overflow_error(e):
                raise
            mid = len(group) // 2
            logger.warning(
                f"Batch of {len(group)} overflowed; retrying as {mid} + {len(group) - mid}"
            )
            work.append(group[mid:])
            work.append(group[:mid])
