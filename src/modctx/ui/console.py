"""Rich-powered console output for modctx."""

from __future__ import annotations

import logging
from pathlib import PurePath

from rich.console import Console as RichConsole
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from modctx import __version__
from modctx.context.models import ExportResult, GenerationResult


def configure_logging(verbose: bool = False) -> None:
    """Route modctx log records to stderr through Rich."""
    logger = logging.getLogger("modctx")
    logger.handlers.clear()
    handler = RichHandler(
        console=RichConsole(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=verbose,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


class Console:
    """Terminal output for modctx using Rich."""

    def __init__(self) -> None:
        self.console = RichConsole()

    def banner(self) -> None:
        """Show the modctx banner."""
        self.console.print(
            Panel(
                f"[bold cyan]modctx[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Module-aware context generation for AI coding assistants[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def show_modules(self, modules: list[dict], focus: str | None = None) -> None:
        """Display registered modules in a table."""
        table = Table(title="Modules", border_style="cyan")
        table.add_column("Name", style="bold")
        table.add_column("Path", style="cyan")
        table.add_column("Dependencies")
        table.add_column("Description", style="dim")

        for m in modules:
            name = m["name"]
            if name == focus:
                name = f"{name} [green](focus)[/green]"
            table.add_row(
                name,
                m["path"],
                ", ".join(m.get("dependencies", [])) or "-",
                m.get("description", ""),
            )

        self.console.print(table)

    def show_dependencies(self, info: dict) -> None:
        """Display a module's dependencies and dependents as a tree."""
        tree = Tree(f"[bold cyan]{info['module']}[/bold cyan]")
        deps = tree.add("[bold]depends on[/bold]")
        for name in info["dependencies"]:
            deps.add(name)
        if not info["dependencies"]:
            deps.add("[dim]nothing[/dim]")
        dependents = tree.add("[bold]used by[/bold]")
        for name in info["dependents"]:
            dependents.add(name)
        if not info["dependents"]:
            dependents.add("[dim]nothing[/dim]")
        self.console.print(tree)

    def show_generation(self, results: list[GenerationResult]) -> None:
        """Summarize generated contexts."""
        table = Table(title="Generated Contexts", border_style="cyan")
        table.add_column("Module", style="bold")
        table.add_column("Level")
        table.add_column("Tokens", justify="right", style="cyan")
        table.add_column("Source", style="dim")

        for r in results:
            table.add_row(
                r.module_name,
                r.level.value,
                f"{r.token_count:,}",
                "cache" if r.from_cache else f"generated (gen {r.generation})",
            )

        self.console.print(table)

    def show_cache_status(self, entries: list[dict]) -> None:
        """Display cached contexts."""
        if not entries:
            self.info("Cache is empty")
            return

        table = Table(title="Context Cache", border_style="cyan")
        table.add_column("Module", style="bold")
        table.add_column("Level")
        table.add_column("Tokens", justify="right", style="cyan")
        table.add_column("Generated", style="dim")

        for e in entries:
            table.add_row(
                e["module"], e["level"], f"{e['tokens']:,}", e["generated_at"]
            )

        self.console.print(table)

    def show_export_stats(self, result: ExportResult) -> None:
        """Display token accounting for an export."""
        lines = [
            f"[bold]Module:[/bold] {result.module_name} ({result.level.value})",
            f"[bold]Tokens:[/bold] {result.token_count:,} / {result.token_budget:,}",
        ]
        color = "green" if result.token_count <= result.token_budget else "yellow"
        if result.optimized:
            lines.append(
                f"[bold]Reduced:[/bold] {result.original_tokens:,} → "
                f"{result.token_count:,} "
                f"([{color}]{result.reduction_percent:.1f}%[/{color}])"
            )
            for p in result.passes:
                lines.append(f"  [dim]{p.name}: -{p.saved:,} tokens[/dim]")
        else:
            lines.append("[bold]Optimized:[/bold] no")

        self.console.print(
            Panel("\n".join(lines), title="[bold]Export[/bold]", border_style=color)
        )

    def show_exclusions(self, patterns: list[str]) -> None:
        """Display exclusion patterns grouped as directories, files and globs."""
        groups: dict[str, list[str]] = {"Directories": [], "Files": [], "Glob Patterns": []}
        for p in patterns:
            if "*" in p or "?" in p or "[" in p:
                groups["Glob Patterns"].append(p)
            elif PurePath(p).suffix:
                groups["Files"].append(p)
            else:
                groups["Directories"].append(p)

        tree = Tree("[bold]Exclusion Patterns[/bold]")
        for title, items in groups.items():
            if items:
                branch = tree.add(f"[cyan]{title}[/cyan]")
                for item in items:
                    branch.add(f"[yellow]{escape(item)}[/yellow]")
        self.console.print(tree)

    def show_file_types(self, counts: dict[str, int]) -> None:
        """File counts per extension, most common first."""
        table = Table(title="File Types", border_style="cyan")
        table.add_column("Extension", style="bold")
        table.add_column("Files", justify="right", style="cyan")
        for ext, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])):
            table.add_row(ext, str(count))
        self.console.print(table)

    def confirm(self, message: str) -> bool:
        """Ask for user confirmation."""
        response = self.console.input(f"\n{message} \\[y/N] ")
        return response.lower().strip() in ("y", "yes")
