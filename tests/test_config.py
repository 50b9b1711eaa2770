"""Tests for configuration management."""

from __future__ import annotations

from pathlib import Path

import pytest

from modctx.config import (
    ContextConfig,
    ProjectConfig,
    find_project_root,
    load_config,
    save_config,
    set_config_value,
)
from modctx.context.models import DetailLevel
from modctx.exceptions import ConfigError


class TestConfig:
    def test_default_config(self):
        config = ProjectConfig()
        assert config.context.default_level is DetailLevel.MEDIUM
        assert config.context.token_budget == 4000
        assert config.context.max_file_size_kb == 100
        assert config.context.fence_line_cap == 120
        assert config.context.fence_keep_lines == 20
        assert config.modules == []
        assert config.focus is None

    def test_save_and_load(self, tmp_path: Path):
        config = ProjectConfig(name="test-project")
        config.context.token_budget = 2000
        config.context.default_level = DetailLevel.HIGH

        save_config(tmp_path, config)
        loaded = load_config(tmp_path)

        assert loaded.name == "test-project"
        assert loaded.context.token_budget == 2000
        assert loaded.context.default_level is DetailLevel.HIGH

    def test_load_without_file_uses_defaults(self, tmp_path: Path):
        config = load_config(tmp_path)
        assert config.name == tmp_path.name
        assert config.context.token_budget == 4000

    def test_load_invalid_file(self, tmp_path: Path):
        (tmp_path / ".modctx").mkdir()
        (tmp_path / ".modctx" / "config.json").write_text("{not json")
        with pytest.raises(ConfigError):
            load_config(tmp_path)

    def test_find_project_root(self, tmp_path: Path):
        # No .modctx dir - should return None
        assert find_project_root(tmp_path) is None

        (tmp_path / ".modctx").mkdir()
        assert find_project_root(tmp_path) == tmp_path

        # Should find from subdirectory
        sub = tmp_path / "src" / "module"
        sub.mkdir(parents=True)
        assert find_project_root(sub) == tmp_path

    def test_set_config_value(self):
        updated = set_config_value(ProjectConfig(), "context.token_budget", 8000)
        assert updated.context.token_budget == 8000

    def test_set_default_level_case_insensitive(self):
        updated = set_config_value(ProjectConfig(), "context.default_level", "LOW")
        assert updated.context.default_level is DetailLevel.LOW

    def test_set_config_invalid_key(self):
        with pytest.raises(KeyError):
            set_config_value(ProjectConfig(), "nonexistent.key", "value")

    @pytest.mark.parametrize("key,value", [
        ("context.default_level", "extreme"),
        ("context.token_budget", 0),
        ("context.fence_keep_lines", 0),
    ])
    def test_set_config_invalid_value(self, key, value):
        with pytest.raises(ConfigError):
            set_config_value(ProjectConfig(), key, value)

    def test_level_validated_on_construction(self):
        with pytest.raises(ValueError):
            ContextConfig(default_level="extreme")

    def test_exclude_patterns(self):
        config = ProjectConfig()
        assert "node_modules" in config.indexer.exclude_patterns
        assert "__pycache__" in config.indexer.exclude_patterns
        assert ".modctx" in config.indexer.exclude_patterns
