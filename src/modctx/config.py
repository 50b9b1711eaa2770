"""Configuration management for modctx."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from modctx.context.models import DetailLevel
from modctx.exceptions import ConfigError

MODCTX_DIR = ".modctx"
CONFIG_FILE = "config.json"
STORE_DB_FILE = "contexts.db"


class ContextConfig(BaseModel):
    """Context generation and optimization defaults."""

    default_level: DetailLevel = DetailLevel.MEDIUM
    token_budget: int = Field(default=4000, gt=0)
    max_file_size_kb: int = Field(default=100, gt=0)  # HIGH-level per-file ceiling
    fence_line_cap: int = Field(default=120, gt=0)
    fence_keep_lines: int = Field(default=20, ge=1)

    @field_validator("default_level", mode="before")
    @classmethod
    def _parse_level(cls, value: Any) -> DetailLevel:
        return DetailLevel.parse(value)


class IndexerConfig(BaseModel):
    """Scanner configuration."""

    exclude_patterns: list[str] = Field(
        default_factory=lambda: [
            "node_modules",
            "__pycache__",
            ".git",
            ".modctx",
            "dist",
            "build",
            ".venv",
            "venv",
            ".env",
            "*.pyc",
            "*.pyo",
            "*.so",
            "*.dylib",
            "*.dll",
            "*.exe",
            "*.min.js",
            "*.min.css",
            "*.map",
            "*.lock",
            "package-lock.json",
            "yarn.lock",
        ]
    )
    max_file_size_kb: int = 500  # files above this are never scanned
    respect_gitignore: bool = True


class ModuleConfig(BaseModel):
    """A registered module: a named subtree of the project."""

    name: str
    path: str
    description: str = ""
    dependencies: list[str] = Field(default_factory=list)


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    root_path: str = "."
    context: ContextConfig = Field(default_factory=ContextConfig)
    indexer: IndexerConfig = Field(default_factory=IndexerConfig)
    modules: list[ModuleConfig] = Field(default_factory=list)
    focus: str | None = None


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .modctx directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / MODCTX_DIR).is_dir():
            return current
        current = current.parent
    if (current / MODCTX_DIR).is_dir():
        return current
    return None


def get_modctx_dir(root: Path) -> Path:
    """Get the .modctx directory for a project root."""
    return root / MODCTX_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .modctx/config.json."""
    config_path = get_modctx_dir(root) / CONFIG_FILE
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
            return ProjectConfig(**data)
        except (json.JSONDecodeError, ValidationError) as e:
            raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e
    return ProjectConfig(name=root.name, root_path=str(root))


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .modctx/config.json."""
    mc_dir = get_modctx_dir(root)
    mc_dir.mkdir(parents=True, exist_ok=True)
    config_path = mc_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(mode="json"), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'context.token_budget')."""
    parts = key.split(".")
    data = config.model_dump(mode="json")
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    try:
        return ProjectConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from e
