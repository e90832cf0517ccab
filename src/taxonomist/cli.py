"""Command-line interface for Taxonomist."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from taxonomist import __version__
from taxonomist.config import (
    ProjectConfig,
    apply_env_overrides,
    find_project_root,
    load_config,
    save_config,
    set_config_value,
)
from taxonomist.exceptions import TaxonomistError
from taxonomist.pipeline.models import Record
from taxonomist.ui.console import Console

console = Console()


def _setup_logging(verbose: bool) -> None:
    """Route taxonomist logs through rich at DEBUG level when --verbose is set."""
    if not verbose:
        return
    from rich.logging import RichHandler

    logger = logging.getLogger("taxonomist")
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(console=console.console, show_path=False, markup=False))
    logger.setLevel(logging.DEBUG)


def _get_project_root(path: str | None = None) -> Path | None:
    """Resolve --path, or the nearest directory holding .taxonomist (may be None)."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root
    return find_project_root()


def _load_project_config(root: Path | None) -> ProjectConfig:
    try:
        config = load_config(root) if root is not None else ProjectConfig()
        return apply_env_overrides(config)
    except TaxonomistError as e:
        console.error(str(e))
        sys.exit(1)


def load_records(path: Path) -> list[Record]:
    """Read records from a JSON Lines file. ``body`` is accepted for ``body_full``."""
    records = []
    for n, line in enumerate(path.read_text().splitlines(), start=1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
            if "body_full" not in data and "body" in data:
                data["body_full"] = data.pop("body")
            data["id"] = str(data["id"])
            records.append(Record(**data))
        except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
            raise click.ClickException(f"{path}:{n}: invalid record ({e})") from e
    return records


@click.group()
@click.version_option(version=__version__, prog_name="taxonomist")
def main():
    """Taxonomist - budget-aware LLM categorization of text records."""
    pass


@main.command()
@click.argument("records_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--out", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Write the resulting store as JSON.")
@click.option("--model", default=None, help="LLM model name.")
@click.option("--provider", default=None, help="LLM provider (anthropic, openai, local).")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def run(
    records_file: Path,
    out: Path | None,
    model: str | None,
    provider: str | None,
    path: str | None,
    verbose: bool,
):
    """Categorize the records in RECORDS_FILE (JSON Lines)."""
    from taxonomist.context import RunContext
    from taxonomist.llm.factory import create_provider
    from taxonomist.pipeline.canonical import filter_categories
    from taxonomist.pipeline.orchestrator import Pipeline

    _setup_logging(verbose)
    root = _get_project_root(path)
    config = _load_project_config(root)
    if provider:
        config.llm.provider = provider
    if model:
        config.llm.model = model

    llm_config = config.llm
    if not llm_config.api_key and llm_config.provider not in ("local",):
        env_var = {"openai": "OPENAI_API_KEY", "anthropic": "ANTHROPIC_API_KEY"}.get(
            llm_config.provider, f"{llm_config.provider.upper()}_API_KEY"
        )
        console.error(
            f"No API key found for {llm_config.provider}. "
            f"Set the {env_var} environment variable or configure it with:\n"
            f"  taxonomist config set llm.api_key_env {env_var}"
        )
        sys.exit(1)

    try:
        llm = create_provider(llm_config)
    except ValueError as e:
        console.error(str(e))
        sys.exit(1)

    records = load_records(records_file)
    console.banner()
    console.info(f"Categorizing {len(records)} record(s) with {llm_config.model}")

    pipeline = Pipeline(
        llm,
        context=RunContext(config=config, root=root),
        on_progress=console.pass_status,
    )
    try:
        result = asyncio.run(pipeline.run(records))
    except TaxonomistError as e:
        console.error(str(e))
        sys.exit(1)

    store = result.store
    console.show_store(store, filter_categories(store, config.pipeline.min_category_size))
    if result.filled:
        console.warning(f"{len(result.filled)} record(s) were auto-assigned after Streamline")
    if store.orphans:
        console.warning(
            f"{len(store.orphans)} record(s) dropped with deleted categories: {', '.join(store.orphans)}"
        )

    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(store.model_dump_json(indent=2))
        console.success(f"Store written to {out}")


@main.command()
@click.argument("record_count", type=click.IntRange(min=1))
@click.option("--model", default=None, help="Also show request ceilings for this model.")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def budget(record_count: int, model: str | None, path: str | None):
    """Show the category-count budget for RECORD_COUNT records."""
    from taxonomist.budget.planner import category_budget

    root = _get_project_root(path)
    config = _load_project_config(root)
    plan = None
    if model:
        from taxonomist.context import RunContext

        context = RunContext(config=config, root=root)
        plan = context.planner.plan_for(model)
    console.show_budget(record_count, category_budget(record_count, config.budget), plan)


# =========================================================================
# Config Management
# =========================================================================

@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage Taxonomist configuration (.taxonomist/config.json)."""
    root = Path(path).resolve() if path else (find_project_root() or Path.cwd())
    try:
        config = load_config(root)
    except TaxonomistError as e:
        console.error(str(e))
        sys.exit(1)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: taxonomist config get <key>")
            sys.exit(1)
        data = config.model_dump()
        for part in key.split("."):
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: taxonomist config set <key> <value>")
            sys.exit(1)
        try:
            # Try to parse as JSON for non-string values
            try:
                parsed_value = json.loads(value)
            except json.JSONDecodeError:
                parsed_value = value

            config = set_config_value(config, key, parsed_value)
            save_config(root, config)
            console.success(f"Set {key} = {parsed_value}")
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        except ValidationError as e:
            console.error(f"Invalid value for {key}: {e}")
            sys.exit(1)


if __name__ == "__main__":
    main()
