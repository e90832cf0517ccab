"""Budget planning: per-request token ceilings and category-count targets.

Two unrelated quantities share the word "budget" here:

- ``BudgetPlanner.plan_for`` turns a model's advertised limits into the input
  and output ceilings of one request.
- ``category_budget`` decides how many categories a corpus of N records
  should end up with. It grows sub-linearly (``sqrt(N)`` as the lower anchor,
  ``N**0.6`` as the upper one) so large corpora neither collapse into a few
  catch-all buckets nor fan out to one category per record.
"""

from __future__ import annotations

import logging
import math

from pydantic import BaseModel, ConfigDict

from taxonomist.config import BudgetConfig, LLMConfig
from taxonomist.llm.limits import ModelLimitsLookup

logger = logging.getLogger("taxonomist.budget")

# A model is usable when the prompt fills at most this share of its context
MODEL_HEADROOM = 0.85


class BudgetPlan(BaseModel):
    """Token ceilings for one request against one model."""

    model_config = ConfigDict(frozen=True)

    max_input_tokens: int
    max_output_tokens: int
    reserve_output_tokens: int


class CategoryBudget(BaseModel):
    """Target window for the number of categories."""

    model_config = ConfigDict(frozen=True)

    min: int
    max: int
    max_new: int
    split_threshold: int


def category_budget(record_count: int, config: BudgetConfig | None = None) -> CategoryBudget:
    """Compute the category-count window for ``record_count`` records.

    Both bounds are non-decreasing in ``record_count`` and ``min <= max``.
    """
    config = config or BudgetConfig()
    n = max(1, record_count)
    ceiling = max(1, config.category_ceiling)
    floor = min(max(1, config.category_floor), ceiling)

    low = min(max(math.ceil(math.sqrt(n)), floor), ceiling, n)
    high = min(max(math.ceil(n**0.6), low), ceiling, n)
    return CategoryBudget(
        min=low,
        max=high,
        max_new=min(n, 2 * high),
        split_threshold=max(config.split_threshold, math.ceil(2 * n / high)),
    )


def per_record_budget(
    batch_size: int,
    max_input_tokens: int,
    overhead_tokens: int = 0,
    floor: int = 512,
    ceiling: int | None = None,
) -> int:
    """Share the usable input of one request evenly across a batch of records.

    ``overhead_tokens`` covers instructions and framing. The result never drops
    below ``floor`` and, when given, never exceeds ``ceiling``.
    """
    usable = max(0, max_input_tokens - overhead_tokens)
    share = usable // max(1, batch_size)
    share = max(floor, share)
    if ceiling is not None:
        share = min(share, max(floor, ceiling))
    return share


class BudgetPlanner:
    """Computes and caches ``BudgetPlan`` values per ``(model, reserve_output)``."""

    def __init__(self, limits: ModelLimitsLookup, config: BudgetConfig | None = None) -> None:
        self.limits = limits
        self.config = config or BudgetConfig()
        self._plans: dict[tuple[str, int], BudgetPlan] = {}

    def plan_for(self, model_id: str, reserve_output: int | None = None) -> BudgetPlan:
        """Return the request ceilings for ``model_id``.

        The input ceiling is the context window minus the reserved output and a
        safety margin for framing, floored at ``min_input_tokens``.
        """
        reserve = self.config.reserve_output if reserve_output is None else reserve_output
        key = (model_id, reserve)
        cached = self._plans.get(key)
        if cached is not None:
            return cached

        limits = self.limits.limits_for(model_id)
        max_input = max(
            self.config.min_input_tokens,
            limits.context - reserve - self.config.safety_margin,
        )
        plan = BudgetPlan(
            max_input_tokens=max_input,
            max_output_tokens=limits.output,
            reserve_output_tokens=reserve,
        )
        logger.debug(f"Budget plan for {model_id} (reserve {reserve}): {plan}")
        self._plans[key] = plan
        return plan

    def pick_model_for(self, prompt_tokens: int, llm: LLMConfig) -> str:
        """Pick the first configured model whose context comfortably fits the prompt."""
        for model_id in [llm.model, *llm.fallback_models]:
            context = self.limits.limits_for(model_id).context
            if prompt_tokens < context * MODEL_HEADROOM:
                return model_id
        return llm.model

    def invalidate(self) -> None:
        """Forget cached plans (and the limits catalog they were built from)."""
        self._plans.clear()
        self.limits.invalidate()
