"""Shared test fixtures for modctx."""

from __future__ import annotations

from pathlib import Path

import pytest

from modctx.config import ProjectConfig, load_config
from modctx.context.cache import ContextCache
from modctx.context.engine import ContextEngine
from modctx.modules.registry import ModuleRegistry
from modctx.modules.resolver import ModuleResolver


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """Create a temporary project with two source trees: app/ and lib/."""
    app = tmp_path / "app"
    (app / "api").mkdir(parents=True)
    lib = tmp_path / "lib"
    lib.mkdir()

    (app / "main.py").write_text('''"""Main application entry point."""

from lib.helpers import calculate_total


def main():
    """Run the main application."""
    total = calculate_total(["widget", "gadget"])
    print(f"Order total: {total}")
    return total


if __name__ == "__main__":
    main()
''')

    (app / "api" / "__init__.py").write_text('"""API package."""\n')

    (app / "api" / "routes.py").write_text('''"""API routes."""


def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
''')

    (lib / "helpers.py").write_text('''"""Utility functions."""

TAX_RATE = 0.08


def calculate_total(items):
    """Calculate total price for a list of items."""
    prices = {"widget": 9.99, "gadget": 24.99}
    subtotal = sum(prices.get(item, 0) for item in items)
    return subtotal * (1 + TAX_RATE)
''')

    (lib / "README.md").write_text("# lib\n\nShared helpers for the app.\n")

    # Never collected
    (app / "__pycache__").mkdir()
    (app / "__pycache__" / "main.cpython-312.pyc").write_bytes(b"\0\0\0junk")

    return tmp_path


@pytest.fixture
def registered_project(tmp_project: Path) -> Path:
    """tmp_project with .modctx/config.json registering app (depends on lib) and lib."""
    config = ProjectConfig(name=tmp_project.name, root_path=str(tmp_project))
    registry = ModuleRegistry(tmp_project, config)
    registry.add_module("app", "app", "Application code")
    registry.add_module("lib", "lib", "Shared helpers")
    registry.add_dependency("app", "lib")
    return tmp_project


@pytest.fixture
def registry(registered_project: Path) -> ModuleRegistry:
    return ModuleRegistry(registered_project, load_config(registered_project))


@pytest.fixture
def engine(registry: ModuleRegistry) -> ContextEngine:
    """An engine with an in-memory cache."""
    return ContextEngine(ModuleResolver(registry), ContextCache(), registry.config.context)


def core_source(stem: str, lines: int = 170) -> str:
    """A fixed-width source file: a docstring and `lines - 1` statements."""
    body = [f'"""Core stage {stem}."""']
    for i in range(1, lines):
        body.append(f"    result_{i:03d} = transform(data[{i:03d}], scale=1.5)  # stage {i:03d}")
    return "\n".join(body) + "\n"


@pytest.fixture
def core_project(tmp_path: Path) -> Path:
    """A project whose single module `core` renders to roughly 9,000 tokens at HIGH.

    Three files of 170 lines each, so every code block exceeds the default
    120-line fence cap.
    """
    root = tmp_path / "scenario"
    core = root / "core"
    core.mkdir(parents=True)
    for stem in ("alpha", "beta", "gamma"):
        (core / f"{stem}.py").write_text(core_source(stem))

    config = ProjectConfig(name="scenario", root_path=str(root))
    ModuleRegistry(root, config).add_module("core", "core", "Core pipeline stages")
    return root


@pytest.fixture
def core_engine(core_project: Path) -> ContextEngine:
    registry = ModuleRegistry(core_project, load_config(core_project))
    return ContextEngine(ModuleResolver(registry), ContextCache(), registry.config.context)
