"""Command-line interface for modctx."""

from __future__ import annotations

import asyncio
import functools
import json
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import click

from modctx import __version__
from modctx.config import (
    IndexerConfig,
    find_project_root,
    get_modctx_dir,
    load_config,
    save_config,
    set_config_value,
)
from modctx.context.engine import ContextEngine, build_engine
from modctx.context.export import EXPORT_FORMATS, export_filename, export_formatted
from modctx.exceptions import ModCtxError
from modctx.modules.registry import ModuleRegistry
from modctx.modules.scanner import collect_files, detect_candidate_modules
from modctx.ui.console import Console, configure_logging

console = Console()

LEVEL_CHOICE = click.Choice(["low", "medium", "high"], case_sensitive=False)


def _handles_errors(func):
    """Report modctx and file system errors on the console and exit 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ModCtxError as e:
            console.error(str(e))
            sys.exit(1)
        except OSError as e:
            console.error(f"File system error: {e}")
            sys.exit(1)

    return wrapper


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not get_modctx_dir(root).is_dir():
            console.error(
                f"No modctx project found at {root}. Run 'modctx init' first."
            )
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No modctx project found. Run 'modctx init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


@contextmanager
def _open_engine(path: str | None) -> Iterator[ContextEngine]:
    """Load the project and yield an engine whose cache persists to .modctx."""
    root = _get_project_root(path)
    config = load_config(root)
    engine, store = build_engine(root, config)
    try:
        yield engine
    finally:
        store.close()


def _module_or_focus(registry: ModuleRegistry, name: str | None) -> str:
    if name:
        return name
    focus = registry.get_focus()
    if focus is None:
        console.error("No module given and no focus set. Use 'modctx focus <module>'.")
        sys.exit(1)
    return focus.name


@click.group()
@click.version_option(version=__version__, prog_name="modctx")
@click.option("--verbose", "-v", is_flag=True, help="Log pipeline activity to stderr.")
def main(verbose: bool):
    """modctx - module-aware context generation for AI coding assistants."""
    configure_logging(verbose)


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--detect", is_flag=True, help="Register top-level directories as modules.")
@_handles_errors
def init(path: str | None, detect: bool):
    """Initialize modctx for a repository."""
    root = Path(path or ".").resolve()
    if not root.is_dir():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    console.info(f"Initializing modctx for: {root}")

    config = load_config(root)
    config.name = root.name
    config.root_path = str(root)
    save_config(root, config)
    console.success("Configuration saved")

    if detect:
        registry = ModuleRegistry(root, config)
        _register_candidates(registry)


def _register_candidates(registry: ModuleRegistry) -> None:
    candidates = detect_candidate_modules(registry.root, registry.config.indexer)
    if not candidates:
        console.warning("No candidate modules found")
        return
    for c in candidates:
        if registry.has_module(c["name"]):
            continue
        registry.add_module(c["name"], c["path"])
        console.success(f"Registered module '{c['name']}' ({c['file_count']} files)")


# =========================================================================
# Modules
# =========================================================================

@main.group()
def module():
    """Register and inspect modules."""


@module.command("add")
@click.argument("name")
@click.argument("module_path")
@click.option("--description", "-d", default="", help="Short description of the module.")
@click.option("--depends-on", multiple=True, help="Module this one depends on (repeatable).")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def module_add(
    name: str, module_path: str, description: str,
    depends_on: tuple[str, ...], path: str | None
):
    """Register MODULE_PATH (relative to the project root) as module NAME."""
    with _open_engine(path) as engine:
        registry = engine.resolver.registry
        registry.add_module(name, module_path, description, dependencies=depends_on)
    console.success(f"Added module '{name}' at {module_path}")


@module.command("remove")
@click.argument("name")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def module_remove(name: str, path: str | None):
    """Unregister a module and drop its cached contexts."""
    with _open_engine(path) as engine:
        engine.resolver.registry.remove_module(name)
        engine.invalidate(name)
    console.success(f"Removed module '{name}'")


@module.command("list")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def module_list(path: str | None):
    """List registered modules."""
    root = _get_project_root(path)
    config = load_config(root)
    if not config.modules:
        console.info("No modules registered. Add one with 'modctx module add'.")
        return
    console.show_modules(
        [m.model_dump() for m in config.modules], focus=config.focus
    )


@module.command("show")
@click.argument("name", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def module_show(name: str | None, path: str | None):
    """Show a module's files and dependencies."""
    with _open_engine(path) as engine:
        registry = engine.resolver.registry
        name = _module_or_focus(registry, name)
        descriptor = asyncio.run(engine.resolver.resolve(name))
        info = registry.get_dependencies(name)

    console.console.print(f"[bold]{descriptor.name}[/bold] [dim]{descriptor.root_path}[/dim]")
    if descriptor.description:
        console.console.print(f"  {descriptor.description}")
    console.console.print(
        f"  Files: {len(descriptor.files)} ({descriptor.total_bytes:,} bytes)"
    )
    for f in descriptor.files:
        console.console.print(f"    [cyan]{f.path}[/cyan] [dim]{f.language or 'text'}[/dim]")
    console.show_dependencies(info)


@module.command("detect")
@click.option("--add", "add_found", is_flag=True, help="Register the detected modules.")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def module_detect(add_found: bool, path: str | None):
    """Propose modules from the project's top-level directories."""
    root = _get_project_root(path)
    config = load_config(root)
    if add_found:
        _register_candidates(ModuleRegistry(root, config))
        return

    candidates = detect_candidate_modules(root, config.indexer)
    if not candidates:
        console.warning("No candidate modules found")
        return
    for c in candidates:
        marker = " [dim](registered)[/dim]" if any(
            m.name == c["name"] for m in config.modules
        ) else ""
        console.console.print(f"  [bold]{c['name']}[/bold] {c['file_count']} files{marker}")


# =========================================================================
# Dependencies and focus
# =========================================================================

@main.group()
def deps():
    """Manage dependencies between modules."""


@deps.command("show")
@click.argument("name", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def deps_show(name: str | None, path: str | None):
    """Show what a module depends on and what depends on it."""
    root = _get_project_root(path)
    registry = ModuleRegistry(root, load_config(root))
    console.show_dependencies(registry.get_dependencies(_module_or_focus(registry, name)))


@deps.command("add")
@click.argument("name")
@click.argument("dependency")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def deps_add(name: str, dependency: str, path: str | None):
    """Record that NAME depends on DEPENDENCY."""
    root = _get_project_root(path)
    registry = ModuleRegistry(root, load_config(root))
    if registry.add_dependency(name, dependency):
        console.success(f"'{name}' now depends on '{dependency}'")
    else:
        console.info(f"'{name}' already depends on '{dependency}'")


@deps.command("remove")
@click.argument("name")
@click.argument("dependency")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def deps_remove(name: str, dependency: str, path: str | None):
    """Remove a recorded dependency."""
    root = _get_project_root(path)
    registry = ModuleRegistry(root, load_config(root))
    if registry.remove_dependency(name, dependency):
        console.success(f"'{name}' no longer depends on '{dependency}'")
    else:
        console.info(f"'{name}' does not depend on '{dependency}'")


@main.command()
@click.argument("name", required=False)
@click.option("--clear", is_flag=True, help="Clear the current focus.")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def focus(name: str | None, clear: bool, path: str | None):
    """Show or set the module you are working on."""
    root = _get_project_root(path)
    registry = ModuleRegistry(root, load_config(root))

    if clear:
        registry.set_focus(None)
        console.success("Focus cleared")
    elif name:
        registry.set_focus(name)
        console.success(f"Focus set to '{name}'")
    else:
        current = registry.get_focus()
        if current is None:
            console.info("No focus set")
        else:
            console.console.print(f"Focus: [bold]{current.name}[/bold] ({current.path})")


# =========================================================================
# Context generation
# =========================================================================

@main.command()
@click.argument("name", required=False)
@click.option("--level", "-l", type=LEVEL_CHOICE, default=None,
              help="Detail level (default: context.default_level).")
@click.option("--force", "-f", is_flag=True, help="Regenerate even if cached.")
@click.option("--all", "all_modules", is_flag=True,
              help="Generate every module, dependencies first.")
@click.option("--print", "print_context", is_flag=True, help="Print the generated context.")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def generate(
    name: str | None, level: str | None, force: bool,
    all_modules: bool, print_context: bool, path: str | None
):
    """Generate module contexts and store them in the cache.

    Examples:

        modctx generate core --level high

        modctx generate --all --force
    """
    with _open_engine(path) as engine:
        if all_modules:
            results = list(asyncio.run(
                engine.generate_all_contexts(level, force=force)
            ).values())
        else:
            target = _module_or_focus(engine.resolver.registry, name)
            results = [asyncio.run(
                engine.generate_module_context(target, level, force=force)
            )]

    if print_context:
        for r in results:
            click.echo(r.context)
    else:
        console.show_generation(results)


@main.command()
@click.argument("name", required=False)
@click.option("--level", "-l", type=LEVEL_CHOICE, default=None,
              help="Detail level (default: context.default_level).")
@click.option("--budget", "-b", type=int, default=None,
              help="Token budget (default: context.token_budget).")
@click.option("--no-optimize", is_flag=True, help="Export the context unmodified.")
@click.option("--format", "-F", "output_format", type=click.Choice(list(EXPORT_FORMATS)),
              default="markdown", help="Output format (default: markdown).")
@click.option("--output", "-o", default=None,
              help="Write to this file (or into this directory).")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def export(
    name: str | None, level: str | None, budget: int | None, no_optimize: bool,
    output_format: str, output: str | None, path: str | None
):
    """Export a module context fitted to a token budget.

    Examples:

        modctx export core --level high --budget 4000

        modctx export core --format json -o build/
    """
    with _open_engine(path) as engine:
        target = _module_or_focus(engine.resolver.registry, name)
        result, text = asyncio.run(export_formatted(
            engine, target, level, token_budget=budget,
            optimize=not no_optimize, fmt=output_format,
        ))

    if output is None:
        click.echo(text)
        return

    out_path = Path(output)
    if out_path.is_dir():
        out_path = out_path / export_filename(target, output_format)
    try:
        out_path.write_text(text, encoding="utf-8")
    except OSError as e:
        console.error(f"Could not write {out_path}: {e.strerror or e}")
        sys.exit(1)
    console.show_export_stats(result)
    console.success(f"Wrote {out_path}")


# =========================================================================
# Cache
# =========================================================================

@main.group()
def cache():
    """Inspect and clear cached contexts."""


@cache.command("status")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def cache_status(path: str | None):
    """List cached contexts."""
    with _open_engine(path) as engine:
        entries = []
        for module_name, level in engine.cache.keys():
            artifact = engine.cache.get(module_name, level)
            if artifact is None:
                continue
            entries.append({
                "module": module_name,
                "level": level.value,
                "tokens": artifact.token_count,
                "generated_at": artifact.generated_at.strftime("%Y-%m-%d %H:%M:%S"),
            })
    console.show_cache_status(entries)


@cache.command("clear")
@click.argument("name", required=False)
@click.option("--level", "-l", type=LEVEL_CHOICE, default=None,
              help="Only this level (with NAME).")
@click.option("--yes", "-y", is_flag=True, help="Do not ask before clearing everything.")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def cache_clear(name: str | None, level: str | None, yes: bool, path: str | None):
    """Clear cached contexts, for one module or all of them."""
    with _open_engine(path) as engine:
        if name:
            removed = engine.invalidate(name, level)
        else:
            if not yes and not console.confirm("Clear every cached context?"):
                console.info("Cancelled")
                return
            removed = engine.cache.clear()
    console.success(f"Cleared {removed} cached context(s)")


# =========================================================================
# Exclusions and scanning
# =========================================================================

@main.group()
def exclude():
    """Manage the patterns excluded from scanning."""


def _save_excludes(engine: ContextEngine, patterns: list[str]) -> None:
    """Persist new exclusion patterns and drop contexts built with the old ones."""
    registry = engine.resolver.registry
    registry.config.indexer.exclude_patterns = patterns
    save_config(registry.root, registry.config)
    cleared = engine.cache.clear()
    if cleared:
        console.info(f"Cleared {cleared} cached context(s)")


@exclude.command("list")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def exclude_list(path: str | None):
    """List exclusion patterns, grouped by kind."""
    root = _get_project_root(path)
    patterns = load_config(root).indexer.exclude_patterns
    if not patterns:
        console.info("No exclusion patterns set")
        return
    console.show_exclusions(patterns)


@exclude.command("add")
@click.argument("pattern")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def exclude_add(pattern: str, path: str | None):
    """Exclude files or directories matching PATTERN."""
    pattern = pattern.strip()
    if not pattern:
        console.error("Pattern cannot be empty")
        sys.exit(1)
    with _open_engine(path) as engine:
        patterns = engine.resolver.registry.config.indexer.exclude_patterns
        if pattern in patterns:
            console.info(f"'{pattern}' is already excluded")
            return
        _save_excludes(engine, [*patterns, pattern])
    console.success(f"Added exclusion pattern: {pattern}")


@exclude.command("remove")
@click.argument("pattern")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def exclude_remove(pattern: str, path: str | None):
    """Stop excluding PATTERN."""
    with _open_engine(path) as engine:
        patterns = engine.resolver.registry.config.indexer.exclude_patterns
        if pattern not in patterns:
            console.warning(f"'{pattern}' is not in the exclusion list")
            sys.exit(1)
        _save_excludes(engine, [p for p in patterns if p != pattern])
    console.success(f"Removed exclusion pattern: {pattern}")


@exclude.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def exclude_reset(yes: bool, path: str | None):
    """Restore the default exclusion patterns."""
    if not yes and not console.confirm("Reset exclusion patterns to the defaults?"):
        console.info("Cancelled")
        return
    with _open_engine(path) as engine:
        _save_excludes(engine, IndexerConfig().exclude_patterns)
    console.success("Exclusion patterns reset to defaults")


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print the file list as JSON.")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def scan(as_json: bool, path: str | None):
    """Scan the whole project with the current exclusion patterns."""
    root = _get_project_root(path)
    indexer = load_config(root).indexer
    files = [p.relative_to(root).as_posix() for p in collect_files(root, indexer)]

    if as_json:
        click.echo(json.dumps({
            "file_count": len(files),
            "files": files,
            "exclusions": indexer.exclude_patterns,
        }, indent=2))
        return

    by_type: dict[str, int] = {}
    for rel in files:
        ext = Path(rel).suffix.lstrip(".") or "unknown"
        by_type[ext] = by_type.get(ext, 0) + 1

    console.success(
        f"Found {len(files)} files ({len(indexer.exclude_patterns)} exclusion patterns)"
    )
    console.show_file_types(by_type)


# =========================================================================
# MCP Server
# =========================================================================

@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option(
    "--transport", "-t",
    type=click.Choice(["stdio"]),
    default="stdio",
    help="Transport protocol (default: stdio).",
)
@click.option("--generate-config", type=click.Choice(["claude", "cursor"]),
              default=None, help="Generate MCP config for a client.")
def serve(path: str | None, transport: str, generate_config: str | None):
    """Start the MCP server for AI tool integration.

    Setup for Claude Code:

        modctx serve --generate-config claude >> ~/.claude/mcp_servers.json

    Setup for Cursor:

        modctx serve --generate-config cursor >> .cursor/mcp.json

    Clients then get generate_context, export_context, list_modules,
    get_dependencies, set_focus and invalidate_context.
    """
    from modctx.mcp.server import MCPServer

    if generate_config:
        root_path = str(Path(path or ".").resolve())
        if generate_config == "claude":
            config = MCPServer.generate_claude_config(root_path)
        else:
            config = MCPServer.generate_cursor_config(root_path)
        click.echo(json.dumps(config, indent=2))
        return

    root = _get_project_root(path)
    server = MCPServer(root)

    if transport == "stdio":
        asyncio.run(server.run_stdio())


# =========================================================================
# Config Management
# =========================================================================

@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
@_handles_errors
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage modctx configuration."""
    root = _get_project_root(path)
    config = load_config(root)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(mode="json"), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: modctx config get <key>")
            sys.exit(1)
        data = config.model_dump(mode="json")
        for part in key.split("."):
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        click.echo(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: modctx config set <key> <value>")
            sys.exit(1)
        # Non-string values arrive as JSON
        try:
            parsed_value = json.loads(value)
        except json.JSONDecodeError:
            parsed_value = value

        try:
            config = set_config_value(config, key, parsed_value)
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        save_config(root, config)
        console.success(f"Set {key} = {parsed_value}")


if __name__ == "__main__":
    main()
