"""Run context: the caches a pipeline run depends on, owned in one place.

Model limits, budget plans, slug normalization and the glossary are all
cached here instead of in module globals, so two runs (or two tests) never
share state by accident.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from taxonomist.budget.planner import BudgetPlanner
from taxonomist.config import MODELS_CACHE_FILE, ProjectConfig, get_taxonomist_dir
from taxonomist.glossary import CategoryGlossary, load_glossary
from taxonomist.llm.limits import ModelLimits, ModelLimitsLookup
from taxonomist.pipeline.canonical import SlugNormalizer


@dataclass
class RunContext:
    """Explicit, injectable cache owner for one or more pipeline runs."""

    config: ProjectConfig = field(default_factory=ProjectConfig)
    root: Path | None = None
    limits: ModelLimitsLookup | None = None
    planner: BudgetPlanner | None = None
    slug: SlugNormalizer = field(default_factory=SlugNormalizer)
    _glossary: CategoryGlossary | None = None

    def __post_init__(self) -> None:
        budget = self.config.budget
        if self.limits is None:
            cache_path = None
            if self.root is not None:
                cache_path = get_taxonomist_dir(self.root) / MODELS_CACHE_FILE
            self.limits = ModelLimitsLookup(
                default_context=budget.default_context,
                default_output=budget.default_output,
                url=budget.models_url,
                cache_path=cache_path,
            )
        if self.planner is None:
            self.planner = BudgetPlanner(self.limits, budget)

    @classmethod
    def offline(
        cls,
        config: ProjectConfig | None = None,
        table: dict[str, ModelLimits] | None = None,
    ) -> RunContext:
        """A context whose limits never touch the network (unknown models get defaults)."""
        config = config or ProjectConfig()
        limits = ModelLimitsLookup(
            default_context=config.budget.default_context,
            default_output=config.budget.default_output,
            table=table or {},
        )
        return cls(config=config, limits=limits)

    @property
    def glossary(self) -> CategoryGlossary:
        if self._glossary is None:
            self._glossary = load_glossary(self.root)
        return self._glossary

    def invalidate_glossary(self) -> None:
        self._glossary = None

    def invalidate_all(self) -> None:
        """Drop every cached value; the next use reloads from source."""
        self.planner.invalidate()
        self.slug.invalidate()
        self.invalidate_glossary()
