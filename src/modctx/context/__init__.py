"""Module context generation and token budgeting.

Usage:
    from modctx.context.engine import build_engine

    engine, store = build_engine(root, config)
    result = asyncio.run(engine.generate_module_context("core", "high"))
    exported = asyncio.run(engine.export_context("core", token_budget=4000))

Only the data models are re-exported here; the assembler and engine depend
on the module registry, which depends on configuration, which depends on
these models.
"""

from modctx.context.models import (
    ContextArtifact,
    DetailLevel,
    ExportResult,
    GenerationResult,
    TokenEstimator,
)

__all__ = [
    "ContextArtifact",
    "DetailLevel",
    "ExportResult",
    "GenerationResult",
    "TokenEstimator",
]
