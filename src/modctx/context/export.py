"""Render an ExportResult for hand-off: markdown, plain text or JSON."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from modctx.context.models import DetailLevel, ExportResult, TokenEstimator

if TYPE_CHECKING:
    from modctx.context.engine import ContextEngine

EXPORT_FORMATS = {
    "markdown": ".md",
    "text": ".txt",
    "json": ".json",
}

_HEADING_RE = re.compile(r"^#{1,6}\s+")
_FENCE_RE = re.compile(r"^\s*`{3,}")
_EMPHASIS_RE = re.compile(r"^\*(?P<inner>[^*].*[^*]|[^*])\*$")
_FIT_ROUNDS = 8


def format_export(result: ExportResult, fmt: str = "markdown") -> str:
    """Format an export result.

    Raises:
        ValueError: `fmt` is not one of EXPORT_FORMATS.
    """
    if fmt == "markdown":
        return f"{result.context}\n\n---\n{export_footer(result)}\n"
    elif fmt == "text":
        return strip_markdown(result.context) + "\n"
    elif fmt == "json":
        return result.model_dump_json(indent=2)
    else:
        raise ValueError(
            f"Unknown export format: {fmt!r}. "
            f"Valid formats are: {', '.join(EXPORT_FORMATS)}"
        )


async def export_formatted(
    engine: ContextEngine,
    module_name: str,
    level: DetailLevel | str | None = None,
    token_budget: int | None = None,
    optimize: bool = True,
    fmt: str = "markdown",
) -> tuple[ExportResult, str]:
    """Export a module and format it so the delivered text fits the budget.

    The markdown footer (and the text format's trailing newline) costs
    tokens the optimizer never saw, so while the formatted text is over
    budget the body is re-exported against a budget lowered by the overrun.
    Best effort, like the optimizer itself. JSON is returned as formatted;
    its `context` field is what the budget bounds.
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unknown export format: {fmt!r}")

    result = await engine.export_context(module_name, level, token_budget, optimize)
    text = format_export(result, fmt)
    if not optimize or fmt == "json":
        return result, text

    budget = result.token_budget
    target = budget
    for _ in range(_FIT_ROUNDS):
        overrun = TokenEstimator.estimate(text) - budget
        if overrun <= 0 or target - overrun <= 0:
            break
        target -= overrun
        reduced = await engine.export_context(module_name, level, target, optimize)
        if reduced.context == result.context:
            break
        result = reduced.model_copy(update={"token_budget": budget})
        text = format_export(result, fmt)
    return result, text


def export_footer(result: ExportResult) -> str:
    """One-line summary of what was exported, plus optimization accounting."""
    footer = (
        f"*Context for `{result.module_name}` ({result.level.value}): "
        f"{result.token_count:,} tokens, budget {result.token_budget:,}*"
    )
    if result.optimized and result.original_tokens is not None:
        applied = ", ".join(p.name for p in result.passes) or "none"
        footer += (
            f"\n*Optimized from {result.original_tokens:,} to "
            f"{result.token_count:,} tokens "
            f"({result.reduction_percent or 0:.1f}% reduction; passes: {applied})*"
        )
    return footer


def strip_markdown(body: str) -> str:
    """Drop markdown decoration, leaving fenced code untouched."""
    out: list[str] = []
    fence: str | None = None
    for line in body.split("\n"):
        m = _FENCE_RE.match(line)
        if m:
            marker = line.strip()
            if fence is None:
                fence = marker[: len(marker) - len(marker.lstrip("`"))]
                continue
            if marker.startswith(fence) and set(marker) == {"`"}:
                fence = None
                continue
        if fence is not None:
            out.append(line)
            continue
        line = _HEADING_RE.sub("", line)
        em = _EMPHASIS_RE.match(line)
        if em:
            line = em.group("inner")
        out.append(line)
    return "\n".join(out).strip("\n")


def export_filename(module_name: str, fmt: str) -> str:
    """Default output file name for a module export."""
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unknown export format: {fmt!r}")
    safe = re.sub(r"[^A-Za-z0-9_.-]+", "_", module_name).strip("_") or "module"
    return f"{safe}-context{EXPORT_FORMATS[fmt]}"
