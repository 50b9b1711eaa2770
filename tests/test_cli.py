"""Tests for the CLI interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from modctx import __version__
from modctx.cli import main
from modctx.config import IndexerConfig, load_config


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def project(registered_project: Path) -> str:
    return str(registered_project)


class TestCLIInit:
    def test_init_basic(self, runner: CliRunner, tmp_project: Path):
        result = runner.invoke(main, ["init", "--path", str(tmp_project)])
        assert result.exit_code == 0
        assert "Initializing" in result.output
        assert (tmp_project / ".modctx" / "config.json").exists()

    def test_init_detect(self, runner: CliRunner, tmp_project: Path):
        result = runner.invoke(main, ["init", "--path", str(tmp_project), "--detect"])
        assert result.exit_code == 0
        assert [m.name for m in load_config(tmp_project).modules] == ["app", "lib"]

    def test_init_nonexistent_path(self, runner: CliRunner):
        result = runner.invoke(main, ["init", "--path", "/nonexistent/path"])
        assert result.exit_code != 0

    def test_version(self, runner: CliRunner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_no_project(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(main, ["module", "list", "--path", str(tmp_path)])
        assert result.exit_code == 1
        assert "No modctx project found" in result.output


class TestCLIModules:
    def test_list(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["module", "list", "-p", project])
        assert result.exit_code == 0
        assert "app" in result.output
        assert "lib" in result.output

    def test_add(self, runner: CliRunner, project: str):
        result = runner.invoke(
            main, ["module", "add", "api", "app/api", "-d", "HTTP API",
                   "--depends-on", "lib", "-p", project],
        )
        assert result.exit_code == 0, result.output
        module = next(m for m in load_config(Path(project)).modules if m.name == "api")
        assert module.description == "HTTP API"
        assert module.dependencies == ["lib"]

    def test_add_with_unknown_dependency_registers_nothing(self, runner: CliRunner, project: str):
        result = runner.invoke(
            main, ["module", "add", "api", "app/api", "--depends-on", "ghost", "-p", project],
        )
        assert result.exit_code == 1
        assert "not found" in result.output
        assert [m.name for m in load_config(Path(project)).modules] == ["app", "lib"]

    def test_add_duplicate(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["module", "add", "app", "lib", "-p", project])
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_show(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["module", "show", "app", "-p", project])
        assert result.exit_code == 0, result.output
        assert "main.py" in result.output
        assert "lib" in result.output

    def test_remove(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["module", "remove", "lib", "-p", project])
        assert result.exit_code == 0
        config = load_config(Path(project))
        assert [m.name for m in config.modules] == ["app"]
        assert config.modules[0].dependencies == []

    def test_remove_missing(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["module", "remove", "ghost", "-p", project])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_detect(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["module", "detect", "-p", project])
        assert result.exit_code == 0
        assert "registered" in result.output


class TestCLIDependenciesAndFocus:
    def test_deps_show(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["deps", "show", "lib", "-p", project])
        assert result.exit_code == 0
        assert "used by" in result.output
        assert "app" in result.output

    def test_deps_add_and_remove(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["deps", "remove", "app", "lib", "-p", project])
        assert result.exit_code == 0
        assert load_config(Path(project)).modules[0].dependencies == []

        result = runner.invoke(main, ["deps", "add", "app", "lib", "-p", project])
        assert result.exit_code == 0
        assert load_config(Path(project)).modules[0].dependencies == ["lib"]

    def test_deps_self(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["deps", "add", "lib", "lib", "-p", project])
        assert result.exit_code == 1

    def test_focus(self, runner: CliRunner, project: str):
        assert runner.invoke(main, ["focus", "app", "-p", project]).exit_code == 0
        assert load_config(Path(project)).focus == "app"

        result = runner.invoke(main, ["focus", "-p", project])
        assert "app" in result.output

        assert runner.invoke(main, ["focus", "--clear", "-p", project]).exit_code == 0
        assert load_config(Path(project)).focus is None

    def test_focus_used_as_default_module(self, runner: CliRunner, project: str):
        runner.invoke(main, ["focus", "lib", "-p", project])
        result = runner.invoke(main, ["generate", "--print", "-p", project])
        assert result.exit_code == 0
        assert "# Module: lib" in result.output


class TestCLIGenerate:
    def test_generate_print(self, runner: CliRunner, project: str):
        result = runner.invoke(
            main, ["generate", "app", "--level", "low", "--print", "-p", project]
        )
        assert result.exit_code == 0
        assert "# Module: app" in result.output
        assert "## File Summaries" not in result.output

    def test_generate_all_then_cache_status(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["generate", "--all", "-l", "medium", "-p", project])
        assert result.exit_code == 0, result.output
        assert (Path(project) / ".modctx" / "contexts.db").exists()

        result = runner.invoke(main, ["cache", "status", "-p", project])
        assert result.exit_code == 0
        assert "app" in result.output
        assert "lib" in result.output
        assert "medium" in result.output

    def test_cache_clear(self, runner: CliRunner, project: str):
        runner.invoke(main, ["generate", "--all", "-l", "low", "-p", project])
        result = runner.invoke(main, ["cache", "clear", "app", "-p", project])
        assert result.exit_code == 0
        assert "Cleared 1" in result.output

        result = runner.invoke(main, ["cache", "clear", "--yes", "-p", project])
        assert "Cleared 1" in result.output

        result = runner.invoke(main, ["cache", "status", "-p", project])
        assert "Cache is empty" in result.output

    def test_cache_clear_asks_first(self, runner: CliRunner, project: str):
        runner.invoke(main, ["generate", "--all", "-l", "low", "-p", project])

        result = runner.invoke(main, ["cache", "clear", "-p", project], input="n\n")
        assert result.exit_code == 0
        assert "Cancelled" in result.output

        result = runner.invoke(main, ["cache", "clear", "-p", project], input="y\n")
        assert "Cleared 2" in result.output

    def test_generate_missing_module(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["generate", "ghost", "-p", project])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_generate_without_module_or_focus(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["generate", "-p", project])
        assert result.exit_code == 1
        assert "no focus" in result.output

    def test_invalid_level_rejected(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["generate", "app", "-l", "extreme", "-p", project])
        assert result.exit_code == 2


class TestCLIExport:
    def test_export_markdown(self, runner: CliRunner, project: str):
        result = runner.invoke(
            main, ["export", "app", "-l", "high", "-b", "60", "-p", project]
        )
        assert result.exit_code == 0, result.output
        assert "# Module: app" in result.output
        assert "budget 60" in result.output
        assert "Optimized from" in result.output

    def test_export_no_optimize(self, runner: CliRunner, project: str):
        result = runner.invoke(
            main, ["export", "app", "-l", "high", "-b", "60", "--no-optimize", "-p", project]
        )
        assert result.exit_code == 0
        assert "Optimized from" not in result.output
        assert "def main():" in result.output

    def test_export_json_to_directory(self, runner: CliRunner, project: str, tmp_path: Path):
        out_dir = tmp_path / "out"
        out_dir.mkdir()
        result = runner.invoke(
            main, ["export", "lib", "-F", "json", "-o", str(out_dir), "-p", project]
        )
        assert result.exit_code == 0, result.output

        data = json.loads((out_dir / "lib-context.json").read_text())
        assert data["module_name"] == "lib"
        assert data["level"] == "medium"
        assert data["token_budget"] == 4000

    def test_export_to_missing_directory(self, runner: CliRunner, project: str, tmp_path: Path):
        target = tmp_path / "missing" / "app.md"
        result = runner.invoke(main, ["export", "app", "-o", str(target), "-p", project])
        assert result.exit_code == 1
        assert "Could not write" in result.output
        assert not target.exists()

    def test_export_invalid_budget(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["export", "app", "-b", "0", "-p", project])
        assert result.exit_code == 1
        assert "positive integer" in result.output


class TestCLIConfig:
    def test_show(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["config", "show", "-p", project])
        assert result.exit_code == 0
        assert "token_budget" in result.output

    def test_get(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["config", "get", "context.token_budget", "-p", project])
        assert result.exit_code == 0
        assert "context.token_budget = 4000" in result.output

    def test_set(self, runner: CliRunner, project: str):
        result = runner.invoke(
            main, ["config", "set", "context.default_level", "high", "-p", project]
        )
        assert result.exit_code == 0
        assert load_config(Path(project)).context.default_level.value == "high"

    def test_set_invalid_value(self, runner: CliRunner, project: str):
        result = runner.invoke(
            main, ["config", "set", "context.default_level", "extreme", "-p", project]
        )
        assert result.exit_code == 1

    def test_set_unknown_key(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["config", "set", "nope", "1", "-p", project])
        assert result.exit_code == 1
        assert "Unknown config key" in result.output


class TestCLIServe:
    def test_generate_claude_config(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(
            main, ["serve", "--generate-config", "claude", "-p", str(tmp_path)]
        )
        assert result.exit_code == 0
        config = json.loads(result.output)
        assert config["modctx"]["command"] == "modctx"
        assert config["modctx"]["args"] == ["serve", "--transport", "stdio"]

    def test_generate_cursor_config(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(
            main, ["serve", "--generate-config", "cursor", "-p", str(tmp_path)]
        )
        assert result.exit_code == 0
        assert "mcpServers" in json.loads(result.output)


class TestCLIExcludeAndScan:
    def test_exclude_list(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["exclude", "list", "-p", project])
        assert result.exit_code == 0
        assert "node_modules" in result.output
        assert "Glob Patterns" in result.output

    def test_exclude_add_and_remove(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["exclude", "add", "*.md", "-p", project])
        assert result.exit_code == 0
        assert load_config(Path(project)).indexer.exclude_patterns[-1] == "*.md"

        result = runner.invoke(main, ["exclude", "add", "*.md", "-p", project])
        assert "already excluded" in result.output

        result = runner.invoke(main, ["exclude", "remove", "*.md", "-p", project])
        assert result.exit_code == 0
        assert "*.md" not in load_config(Path(project)).indexer.exclude_patterns

    def test_exclude_remove_unknown(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["exclude", "remove", "nope", "-p", project])
        assert result.exit_code == 1
        assert "not in the exclusion list" in result.output

    def test_exclude_change_clears_cache(self, runner: CliRunner, project: str):
        runner.invoke(main, ["generate", "--all", "-l", "low", "-p", project])
        result = runner.invoke(main, ["exclude", "add", "*.md", "-p", project])
        assert "Cleared 2" in result.output

        result = runner.invoke(main, ["generate", "lib", "-l", "low", "--print", "-p", project])
        assert "README.md" not in result.output

    def test_exclude_reset(self, runner: CliRunner, project: str):
        runner.invoke(main, ["exclude", "remove", "node_modules", "-p", project])
        result = runner.invoke(main, ["exclude", "reset", "--yes", "-p", project])
        assert result.exit_code == 0
        assert (
            load_config(Path(project)).indexer.exclude_patterns
            == IndexerConfig().exclude_patterns
        )

    def test_scan_json(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["scan", "--json", "-p", project])
        assert result.exit_code == 0

        data = json.loads(result.output)
        assert data["file_count"] == len(data["files"])
        assert "app/main.py" in data["files"]
        assert "lib/README.md" in data["files"]
        assert not any(f.startswith(".modctx") or "__pycache__" in f for f in data["files"])

    def test_scan_summary(self, runner: CliRunner, project: str):
        result = runner.invoke(main, ["scan", "-p", project])
        assert result.exit_code == 0
        assert "Found" in result.output
        assert "py" in result.output
