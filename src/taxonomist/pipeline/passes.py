"""Inference-bearing passes.

Each method is an async generator of partial snapshots. Nothing here mutates
features or the store: folding the snapshots is the orchestrator's job.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from typing import TypeVar

from pydantic import BaseModel

from taxonomist.budget.planner import category_budget, per_record_budget
from taxonomist.budget.tokens import estimate_message_tokens, estimate_tokens
from taxonomist.config import PipelineConfig
from taxonomist.context import RunContext
from taxonomist.llm.base import Message
from taxonomist.pipeline import prompts
from taxonomist.pipeline.executor import ResilientExecutor, stream_with_auto_shrink
from taxonomist.pipeline.models import (
    ExpandPlan,
    FactsBatch,
    Feature,
    Fix,
    MergedProposal,
    Store,
    StreamlinedPlan,
)

logger = logging.getLogger("taxonomist.passes")

T = TypeVar("T", bound=BaseModel)


def batched(items: list[Feature], size: int) -> list[list[Feature]]:
    size = max(1, size)
    return [items[i : i + size] for i in range(0, len(items), size)]


class Passes:
    """The six inference passes, sharing one executor and run context."""

    def __init__(self, executor: ResilientExecutor, context: RunContext) -> None:
        self.executor = executor
        self.context = context
        self.last_model: str | None = None

    @property
    def _pipeline(self) -> PipelineConfig:
        return self.context.config.pipeline

    def _pick_model(self, messages: list[Message]) -> str:
        return self.context.planner.pick_model_for(
            estimate_message_tokens(messages), self.context.config.llm
        )

    async def _call(
        self,
        schema: type[T],
        messages: list[Message],
        reserve_output: int,
        model: str | None = None,
    ) -> AsyncIterator[T]:
        model = model or self._pick_model(messages)
        self.last_model = model
        logger.debug(f"{schema.__name__} request on {model} ({len(messages)} messages)")
        async for snapshot in self.executor.stream(schema, messages, reserve_output, model=model):
            yield snapshot

    def _sized_call(
        self,
        schema: type[T],
        build: Callable[[int], list[Message]],
        batch_size: int,
        reserve_output: int,
        system_prompt: str,
    ) -> AsyncIterator[T]:
        """Size record bodies for the model the request will actually use.

        Bodies are first sized for the primary model. When that prompt routes
        to a fallback model, they are re-sized for the fallback's window.
        """
        primary = self.context.config.llm.model
        messages = build(self._body_tokens(primary, batch_size, reserve_output, system_prompt))
        model = self._pick_model(messages)
        if model != primary:
            messages = build(self._body_tokens(model, batch_size, reserve_output, system_prompt))
        return self._call(schema, messages, reserve_output, model=model)

    def _body_tokens(self, model: str, batch_size: int, reserve_output: int, system_prompt: str) -> int:
        budget = self.context.config.budget
        plan = self.context.planner.plan_for(model, reserve_output)
        return per_record_budget(
            batch_size,
            plan.max_input_tokens,
            overhead_tokens=estimate_tokens(system_prompt) + budget.json_overhead,
            floor=budget.per_record_floor,
            ceiling=budget.max_body_tokens,
        )

    async def facts(self, features: list[Feature]) -> AsyncIterator[tuple[list[Feature], FactsBatch]]:
        """Facts snapshots per micro-batch, tagged with the group that produced them."""
        reserve = self._pipeline.reserve_facts

        def process(group: list[Feature]) -> AsyncIterator[FactsBatch]:
            return self._sized_call(
                FactsBatch,
                lambda body: prompts.facts_messages(group, body),
                len(group),
                reserve,
                prompts.FACTS_PROMPT,
            )

        for batch in batched(features, self._pipeline.facts_batch):
            async for group, snapshot in stream_with_auto_shrink(process, batch):
                yield group, snapshot

    async def expand(self, features: list[Feature]) -> AsyncIterator[tuple[list[Feature], ExpandPlan]]:
        reserve = self._pipeline.reserve_expand
        max_new = self._pipeline.max_new_categories

        def process(group: list[Feature]) -> AsyncIterator[ExpandPlan]:
            return self._sized_call(
                ExpandPlan,
                lambda body: prompts.expand_messages(group, body, max_new),
                len(group),
                reserve,
                prompts.EXPAND_PROMPT,
            )

        for batch in batched(features, self._pipeline.expand_batch):
            async for group, snapshot in stream_with_auto_shrink(process, batch):
                yield group, snapshot

    async def refine(self, features: list[Feature], merged: MergedProposal) -> AsyncIterator[ExpandPlan]:
        budget = category_budget(len(features), self.context.config.budget)
        messages = prompts.refine_messages(
            features, merged, self._pipeline.max_categories, budget.split_threshold
        )
        async for snapshot in self._call(ExpandPlan, messages, self._pipeline.reserve_refine):
            yield snapshot

    async def streamline(
        self, features: list[Feature], merged: MergedProposal
    ) -> AsyncIterator[StreamlinedPlan]:
        budget = category_budget(len(features), self.context.config.budget)
        policies = {
            "min_category_size": self._pipeline.min_category_size,
            "max_categories": self._pipeline.max_categories,
            "max_new_categories": self._pipeline.max_new_categories,
            "split_threshold": budget.split_threshold,
        }
        messages = prompts.streamline_messages(features, merged, policies, self.context.glossary)
        async for snapshot in self._call(StreamlinedPlan, messages, self._pipeline.reserve_streamline):
            yield snapshot

    async def consolidate(self, store: Store, features: list[Feature]) -> AsyncIterator[Fix]:
        budget = category_budget(len(features), self.context.config.budget)
        messages = prompts.consolidate_messages(
            store, features, {"min": budget.min, "max": budget.max}
        )
        async for snapshot in self._call(Fix, messages, self._pipeline.reserve_consolidate):
            yield snapshot

    async def qa(self, store: Store, features: list[Feature]) -> AsyncIterator[Fix]:
        messages = prompts.qa_messages(
            store, features, self._pipeline.min_category_size, self.context.glossary
        )
        async for snapshot in self._call(Fix, messages, self._pipeline.reserve_qa):
            yield snapshot
