#!/usr/bin/env python3
"""Demo: Using Taxonomist as a Python library.

This shows how to use Taxonomist programmatically, not just as a CLI tool.
Needs ANTHROPIC_API_KEY (or another provider configured in .taxonomist/).
"""

import asyncio
from pathlib import Path

from taxonomist.budget.planner import category_budget
from taxonomist.cli import load_records
from taxonomist.config import apply_env_overrides, find_project_root, load_config, ProjectConfig
from taxonomist.context import RunContext
from taxonomist.llm.factory import create_provider
from taxonomist.pipeline.canonical import filter_categories
from taxonomist.pipeline.orchestrator import Pipeline


def main():
    # Point at any JSON Lines file of records
    records = load_records(Path("records.jsonl"))

    root = find_project_root()
    config = apply_env_overrides(load_config(root) if root else ProjectConfig())

    # 1. How many categories should this corpus end up with?
    budget = category_budget(len(records), config.budget)
    print(f"{len(records)} records -> {budget.min}..{budget.max} categories")

    # 2. What does one request look like against the configured model?
    context = RunContext(config=config, root=root)
    plan = context.planner.plan_for(config.llm.model)
    print(f"  Max input tokens: {plan.max_input_tokens:,}")
    print(f"  Max output tokens: {plan.max_output_tokens:,}")

    # 3. Run every pass
    pipeline = Pipeline(
        create_provider(config.llm),
        context=context,
        on_progress=lambda name, message: print(f"  [{name}] {message}"),
    )
    result = asyncio.run(pipeline.run(records))

    # 4. Inspect the store
    store = result.store
    print("\n--- Categories ---")
    for category in filter_categories(store, config.pipeline.min_category_size):
        print(f"  {category.title} ({category.slug}): {len(category.entries)} record(s)")
        for entry in category.entries[:3]:
            print(f"    - {entry.id}: {entry.reason}")

    if result.filled:
        print(f"\nAuto-assigned after Streamline: {', '.join(result.filled)}")
    if store.orphans:
        print(f"Dropped with deleted categories: {', '.join(store.orphans)}")

    Path("store.json").write_text(store.model_dump_json(indent=2))
    print("\nStore written to store.json")


if __name__ == "__main__":
    main()
