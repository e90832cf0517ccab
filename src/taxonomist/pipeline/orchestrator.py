"""Pass pipeline orchestrator.

Runs FACTS -> EXPAND -> (merge) -> REFINE -> STREAMLINE -> CONSOLIDATE -> QA
strictly in order, one batch at a time. Each pass folds its snapshot stream
with "last write wins" and hands the result to the next one. Any failure
aborts the run as a ``PassError`` naming the pass.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TypeVar

from taxonomist.config import ProjectConfig
from taxonomist.context import RunContext
from taxonomist.exceptions import PassError, SchemaMismatchError
from taxonomist.glossary import absorb_aliases, save_glossary
from taxonomist.llm.base import LLMProvider
from taxonomist.pipeline.canonical import apply_fix, backfill_from_index, build_store
from taxonomist.pipeline.executor import ResilientExecutor
from taxonomist.pipeline.merge import (
    complete_assignments,
    ensure_minimum_signals,
    graft_facts,
    graft_summaries,
    merge_expand_plans,
)
from taxonomist.pipeline.models import (
    ExpandPlan,
    FactsBatch,
    Feature,
    Fix,
    MergedProposal,
    Policies,
    Record,
    Store,
    StreamlinedPlan,
)
from taxonomist.pipeline.passes import Passes

logger = logging.getLogger("taxonomist.pipeline")

T = TypeVar("T")

FACTS = "FACTS"
EXPAND = "EXPAND"
REFINE = "REFINE"
STREAMLINE = "STREAMLINE"
CONSOLIDATE = "CONSOLIDATE"
QA = "QA"

PASSES = (FACTS, EXPAND, REFINE, STREAMLINE, CONSOLIDATE, QA)

# Called as on_progress(pass_name, message)
ProgressCallback = Callable[[str, str], None]

_EXPAND_FIELDS = {"categories", "assignments", "summaries"}
_REFINE_FIELDS = {"categories", "assignments"}


@dataclass
class PipelineResult:
    """Final store plus the enriched features it was built from."""

    store: Store
    features: list[Feature] = field(default_factory=list)
    filled: list[str] = field(default_factory=list)

    @property
    def orphans(self) -> list[str]:
        return self.store.orphans


class Pipeline:
    """Turns records into a canonical category store."""

    def __init__(
        self,
        provider: LLMProvider,
        config: ProjectConfig | None = None,
        context: RunContext | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        if context is None:
            context = RunContext(config=config or ProjectConfig())
        self.context = context
        self.config = context.config
        self.provider = provider
        self.on_progress = on_progress
        self.executor = ResilientExecutor(
            provider,
            context.planner,
            max_retries=self.config.pipeline.max_retries,
            overhead_tokens=self.config.budget.json_overhead,
            temperature=self.config.llm.temperature,
        )
        self.passes = Passes(self.executor, context)

    def _progress(self, name: str, message: str) -> None:
        logger.info(f"[{name}] {message}")
        if self.on_progress:
            self.on_progress(name, message)

    @contextmanager
    def _stage(self, name: str) -> Iterator[None]:
        self._progress(name, "started")
        try:
            yield
        except Exception as e:
            raise PassError(name, e) from e

    async def run(self, records: Iterable[Record]) -> PipelineResult:
        """Run every pass over ``records`` and return the final store.

        Raises:
            PassError: If any pass fails. The original error is its ``__cause__``.
        """
        features = [Feature.from_record(r) for r in records]
        policies = Policies(
            min_category_size=self.config.pipeline.min_category_size,
            max_categories=self.config.pipeline.max_categories,
        )
        if not features:
            return PipelineResult(store=Store(policies=policies), features=features)

        slug = self.context.slug

        with self._stage(FACTS):
            await self._facts(features)

        with self._stage(EXPAND):
            merged = await self._expand(features)

        with self._stage(REFINE):
            merged = await self._refine(features, merged)

        with self._stage(STREAMLINE):
            plan = await self._last(self.passes.streamline(features, merged)) or StreamlinedPlan()
            plan, filled = complete_assignments(plan, features, merged, slug)
            if filled:
                logger.warning(
                    f"Streamline left {len(filled)} record(s) unassigned; "
                    f"filled in: {', '.join(filled)}"
                )
            store = build_store(features, plan, policies, slug)
            store.record_note("streamline", self.passes.last_model)
            self._progress(STREAMLINE, f"{len(store.categories)} categories")

        with self._stage(CONSOLIDATE):
            fix = await self._last(self.passes.consolidate(store, features))
            if fix is not None:
                apply_fix(store, fix, slug)
                store.record_note("consolidate", self.passes.last_model)
            self._progress(CONSOLIDATE, f"{len(store.categories)} categories")

        with self._stage(QA):
            fix = await self._last(self.passes.qa(store, features))
            if fix is None:
                raise SchemaMismatchError("QA produced no result")
            apply_fix(store, fix, slug)
            store.record_note("qa", self.passes.last_model)
            self._absorb(fix)
            self._progress(QA, f"{len(store.categories)} categories")

        backfill_from_index(store, features)
        ensure_minimum_signals(features)
        if store.orphans:
            logger.warning(f"{len(store.orphans)} record(s) were dropped with deleted categories")
        return PipelineResult(store=store, features=features, filled=filled)

    async def _last(self, stream: AsyncIterator[T]) -> T | None:
        last = None
        async for snapshot in stream:
            last = snapshot
        return last

    async def _facts(self, features: list[Feature]) -> None:
        latest: dict[tuple[str, ...], FactsBatch] = {}
        async for group, snapshot in self.passes.facts(features):
            latest[tuple(f.id for f in group)] = snapshot
        updated = sum(graft_facts(features, batch, ids) for ids, batch in latest.items())
        self._progress(FACTS, f"{updated}/{len(features)} records enriched")

    async def _expand(self, features: list[Feature]) -> MergedProposal:
        accepted: dict[tuple[str, ...], ExpandPlan] = {}
        async for group, snapshot in self.passes.expand(features):
            # Only adopt snapshots that carry every section
            if _EXPAND_FIELDS <= snapshot.model_fields_set:
                accepted[tuple(f.id for f in group)] = snapshot
        merged = merge_expand_plans(
            accepted.values(), self.context.slug, self.config.pipeline.topic_cap
        )
        graft_summaries(features, merged.summaries)
        self._progress(
            EXPAND,
            f"{len(accepted)} batch(es), {len(merged.categories)} candidate categories",
        )
        return merged

    async def _refine(self, features: list[Feature], merged: MergedProposal) -> MergedProposal:
        refined = await self._last(self.passes.refine(features, merged))
        if refined is None or not _REFINE_FIELDS <= refined.model_fields_set:
            self._progress(REFINE, "no changes")
            return merged
        merged = merge_expand_plans([merged, refined], self.context.slug, self.config.pipeline.topic_cap)
        graft_summaries(features, merged.summaries)
        self._progress(REFINE, f"{len(merged.categories)} candidate categories")
        return merged

    def _absorb(self, fix: Fix) -> None:
        glossary = self.context.glossary
        added = absorb_aliases(glossary, fix)
        if added and self.context.root is not None:
            save_glossary(self.context.root, glossary)
