"""Configuration management for Taxonomist."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from taxonomist.exceptions import ConfigError

TAXONOMIST_DIR = ".taxonomist"
CONFIG_FILE = "config.json"
GLOSSARY_FILE = "glossary.json"
MODELS_CACHE_FILE = "models-cache.json"
ENV_PREFIX = "TAXONOMIST_"


class LLMConfig(BaseModel):
    """LLM provider configuration."""

    provider: str = "anthropic"
    model: str = "claude-sonnet-4-5-20250929"
    fallback_models: list[str] = Field(default_factory=list)
    api_key_env: str = ""
    temperature: float = 0.0
    base_url: str | None = None

    @property
    def api_key(self) -> str | None:
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        # Try common env vars
        env_map = {
            "openai": "OPENAI_API_KEY",
            "anthropic": "ANTHROPIC_API_KEY",
        }
        env_var = env_map.get(self.provider, "")
        return os.environ.get(env_var)


class BudgetConfig(BaseModel):
    """Token and category-count budgeting."""

    default_context: int = 128_000
    default_output: int = 8192
    reserve_output: int = 2048
    safety_margin: int = 300  # framing overhead subtracted from the context window
    min_input_tokens: int = 4096
    json_overhead: int = 300  # framing overhead assumed by the fitter
    max_body_tokens: int = 20_000
    per_record_floor: int = 512
    category_floor: int = 2
    category_ceiling: int = 36
    split_threshold: int = 4
    models_url: str = "https://models.dev/api.json"


class PipelineConfig(BaseModel):
    """Pass batching, retry bounds and store policies."""

    facts_batch: int = 4
    expand_batch: int = 4
    max_retries: int = 2
    reserve_facts: int = 1024
    reserve_expand: int = 2048
    reserve_refine: int = 2048
    reserve_streamline: int = 2048
    reserve_consolidate: int = 2048
    reserve_qa: int = 1024
    min_category_size: int = 1
    max_categories: int = 100
    max_new_categories: int = 50
    topic_cap: int = 12


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    root_path: str = "."
    llm: LLMConfig = Field(default_factory=LLMConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .taxonomist directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / TAXONOMIST_DIR).is_dir():
            return current
        current = current.parent
    if (current / TAXONOMIST_DIR).is_dir():
        return current
    return None


def get_taxonomist_dir(root: Path) -> Path:
    """Get the .taxonomist directory for a project root."""
    return root / TAXONOMIST_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .taxonomist/config.json."""
    config_path = get_taxonomist_dir(root) / CONFIG_FILE
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
            return ProjectConfig(**data)
        except (json.JSONDecodeError, ValidationError) as e:
            raise ConfigError(f"Invalid config file {config_path}: {e}") from e
    return ProjectConfig(name=root.name, root_path=str(root))


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .taxonomist/config.json."""
    tx_dir = get_taxonomist_dir(root)
    tx_dir.mkdir(parents=True, exist_ok=True)
    config_path = tx_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'llm.provider')."""
    parts = key.split(".")
    data = config.model_dump()
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    return ProjectConfig(**data)


def apply_env_overrides(
    config: ProjectConfig, environ: Mapping[str, str] | None = None
) -> ProjectConfig:
    """Apply TAXONOMIST_<SECTION>_<FIELD> environment overrides.

    List fields take comma-separated values. Everything else is coerced by
    pydantic when the config is rebuilt.
    """
    env = os.environ if environ is None else environ
    data = config.model_dump()
    for section, fields in data.items():
        if not isinstance(fields, dict):
            continue
        for field_name, current in fields.items():
            raw = env.get(f"{ENV_PREFIX}{section}_{field_name}".upper())
            if raw is None:
                continue
            if isinstance(current, list):
                fields[field_name] = [s.strip() for s in raw.split(",") if s.strip()]
            else:
                fields[field_name] = raw
    try:
        return ProjectConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid environment override: {e}") from e
