"""Tests for configuration management."""

from __future__ import annotations

from pathlib import Path

import pytest

from taxonomist.config import (
    ProjectConfig,
    apply_env_overrides,
    find_project_root,
    load_config,
    save_config,
    set_config_value,
)
from taxonomist.exceptions import ConfigError


class TestConfig:
    def test_default_config(self):
        config = ProjectConfig()
        assert config.llm.provider == "anthropic"
        assert config.pipeline.max_retries == 2
        assert config.budget.category_ceiling == 36

    def test_save_and_load(self, tmp_path: Path):
        config = ProjectConfig(name="test-project")
        config.llm.provider = "openai"
        config.llm.model = "gpt-4o"

        save_config(tmp_path, config)
        loaded = load_config(tmp_path)

        assert loaded.name == "test-project"
        assert loaded.llm.provider == "openai"
        assert loaded.llm.model == "gpt-4o"

    def test_load_missing_uses_defaults(self, tmp_path: Path):
        loaded = load_config(tmp_path)
        assert loaded.name == tmp_path.name
        assert loaded.llm.provider == "anthropic"

    def test_load_invalid_json(self, tmp_path: Path):
        (tmp_path / ".taxonomist").mkdir()
        (tmp_path / ".taxonomist" / "config.json").write_text("{not json")
        with pytest.raises(ConfigError):
            load_config(tmp_path)

    def test_find_project_root(self, tmp_path: Path):
        # No .taxonomist dir - should return None
        assert find_project_root(tmp_path) is None

        (tmp_path / ".taxonomist").mkdir()
        assert find_project_root(tmp_path) == tmp_path

        # Should find from subdirectory
        sub = tmp_path / "data" / "batch"
        sub.mkdir(parents=True)
        assert find_project_root(sub) == tmp_path

    def test_set_config_value(self):
        config = ProjectConfig()
        updated = set_config_value(config, "llm.provider", "openai")
        assert updated.llm.provider == "openai"

    def test_set_config_nested(self):
        config = ProjectConfig()
        updated = set_config_value(config, "pipeline.facts_batch", 8)
        assert updated.pipeline.facts_batch == 8

    def test_set_config_invalid_key(self):
        config = ProjectConfig()
        with pytest.raises(KeyError):
            set_config_value(config, "nonexistent.key", "value")
        with pytest.raises(KeyError):
            set_config_value(config, "llm.nope", "value")


class TestEnvOverrides:
    def test_scalar_and_list_fields(self):
        env = {
            "TAXONOMIST_LLM_MODEL": "gpt-4o-mini",
            "TAXONOMIST_LLM_FALLBACK_MODELS": "gpt-4o, gpt-4.1 ,",
            "TAXONOMIST_PIPELINE_MAX_RETRIES": "5",
        }
        config = apply_env_overrides(ProjectConfig(), env)
        assert config.llm.model == "gpt-4o-mini"
        assert config.llm.fallback_models == ["gpt-4o", "gpt-4.1"]
        assert config.pipeline.max_retries == 5

    def test_no_overrides(self):
        config = ProjectConfig(name="same")
        assert apply_env_overrides(config, {}) == config

    def test_invalid_override(self):
        with pytest.raises(ConfigError):
            apply_env_overrides(ProjectConfig(), {"TAXONOMIST_PIPELINE_MAX_RETRIES": "lots"})

    def test_reads_process_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("TAXONOMIST_BUDGET_DEFAULT_CONTEXT", "64000")
        assert apply_env_overrides(ProjectConfig()).budget.default_context == 64_000


class TestApiKey:
    def test_provider_default_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        config = ProjectConfig()
        config.llm.provider = "openai"
        assert config.llm.api_key == "sk-test"

    def test_custom_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("MY_KEY", "secret")
        config = ProjectConfig()
        config.llm.api_key_env = "MY_KEY"
        assert config.llm.api_key == "secret"
