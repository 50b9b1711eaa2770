"""Context generation pipeline.

  resolve -> assemble -> estimate -> (optimize) -> cache

Only module resolution suspends; assembly, estimation and optimization are
synchronous and pure. Generation is deduplicated per (module, level): while
one generation is in flight, later non-forced requests await it instead of
starting another, and a forced request waits for it to finish before
recomputing, so writes to a key never interleave.

Usage:
    engine = build_engine(root, config)
    result = asyncio.run(engine.generate_module_context("core", level="high"))
    exported = asyncio.run(engine.export_context("core", token_budget=4000))
"""

from __future__ import annotations

import asyncio
import functools
import logging
from pathlib import Path

from modctx.config import STORE_DB_FILE, ContextConfig, ProjectConfig, get_modctx_dir
from modctx.context.assembler import ContextAssembler
from modctx.context.cache import CacheEntry, ContextCache
from modctx.context.models import (
    ContextArtifact,
    DetailLevel,
    ExportResult,
    GenerationResult,
    PassRecord,
    TokenEstimator,
)
from modctx.context.optimizer import ContextOptimizer
from modctx.exceptions import InvalidBudget
from modctx.modules.registry import ModuleRegistry
from modctx.modules.resolver import ModuleResolver
from modctx.storage.store import ContextStore

logger = logging.getLogger("modctx.engine")

_Key = tuple[str, DetailLevel]


class ContextEngine:
    """Produces, caches and optimizes module contexts.

    The engine owns its cache; construct one engine per project (or per test)
    and let it go with the process.
    """

    def __init__(
        self,
        resolver: ModuleResolver,
        cache: ContextCache | None = None,
        config: ContextConfig | None = None,
    ) -> None:
        self.resolver = resolver
        self.cache = cache if cache is not None else ContextCache()
        self.config = config or ContextConfig()
        self.assembler = ContextAssembler(max_file_size_kb=self.config.max_file_size_kb)
        self.optimizer = ContextOptimizer(
            fence_line_cap=self.config.fence_line_cap,
            fence_keep_lines=self.config.fence_keep_lines,
        )
        self._inflight: dict[_Key, asyncio.Task] = {}

    # -------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------

    async def generate_module_context(
        self,
        module_name: str,
        level: DetailLevel | str | None = None,
        force: bool = False,
    ) -> GenerationResult:
        """Generate (or fetch from cache) the context of one module.

        Raises:
            ModuleNotFound: the module is not registered.
            InvalidLevel: `level` is not low, medium or high.
            ResolverUnavailable: the module's files could not be read.
        """
        level = self._level(level)
        entry, from_cache = await self._generate(module_name, level, force=force)
        return GenerationResult(
            module_name=module_name,
            level=level,
            token_count=entry.artifact.token_count,
            from_cache=from_cache,
            context=entry.artifact.body,
            generation=entry.generation,
        )

    async def export_context(
        self,
        module_name: str,
        level: DetailLevel | str | None = None,
        token_budget: int | None = None,
        optimize: bool = True,
    ) -> ExportResult:
        """Fetch a module context and fit it to `token_budget` if asked.

        The body is returned unmodified (``optimized=False``) when
        optimization is declined or the body already fits.
        """
        level = self._level(level)
        budget = self.config.token_budget if token_budget is None else token_budget
        if isinstance(budget, bool) or not isinstance(budget, int) or budget <= 0:
            raise InvalidBudget(budget)

        artifact, _ = await self.generate(module_name, level)
        passes: list[PassRecord] = []

        if optimize and artifact.token_count > budget:
            artifact, passes = self.optimize_artifact(artifact, budget)

        return ExportResult(
            module_name=module_name,
            level=level,
            token_count=artifact.token_count,
            optimized=artifact.optimized,
            context=artifact.body,
            token_budget=budget,
            reduction_percent=artifact.reduction_percent,
            original_tokens=artifact.original_tokens,
            passes=passes,
            generated_at=artifact.generated_at,
        )

    async def generate_all_contexts(
        self, level: DetailLevel | str | None = None, force: bool = False
    ) -> dict[str, GenerationResult]:
        """Generate every registered module, dependencies first."""
        level = self._level(level)
        order = self.resolver.registry.generation_order()
        logger.info(f"Generating {level.value} context for {len(order)} modules")

        results: dict[str, GenerationResult] = {}
        for name in order:
            results[name] = await self.generate_module_context(name, level, force=force)
        return results

    def invalidate(self, module_name: str, level: DetailLevel | str | None = None) -> int:
        """Drop cached contexts for a module (one level, or all)."""
        return self.cache.invalidate(module_name, level)

    # -------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------

    async def generate(
        self, module_name: str, level: DetailLevel | str, force: bool = False
    ) -> tuple[ContextArtifact, bool]:
        """Return the current artifact for the key and whether it came from cache.

        A request that joins an in-flight generation reports ``from_cache``
        as True: it did not trigger the computation it observed.
        """
        entry, from_cache = await self._generate(module_name, level, force=force)
        return entry.artifact, from_cache

    async def _generate(
        self, module_name: str, level: DetailLevel | str, force: bool = False
    ) -> tuple[CacheEntry, bool]:
        """Like `generate`, but keeps the generation paired with its artifact."""
        level = DetailLevel.parse(level)
        key = (module_name, level)

        if not force:
            cached = self.cache.entry(module_name, level)
            if cached is not None:
                return cached, True
            pending = self._inflight.get(key)
            if pending is not None:
                logger.debug(f"Joining in-flight generation of {module_name}/{level.value}")
                return await asyncio.shield(pending), True
        else:
            while key in self._inflight:
                await asyncio.wait([self._inflight[key]])

        task = asyncio.ensure_future(self._build(module_name, level))
        self._inflight[key] = task
        # Registered before any waiter, so the key is released before they wake
        task.add_done_callback(functools.partial(self._release, key))
        return await task, False

    async def _build(self, module_name: str, level: DetailLevel) -> CacheEntry:
        logger.info(f"Generating {level.value} context for module '{module_name}'")
        descriptor = await self.resolver.resolve(module_name)
        body = self.assembler.assemble(descriptor, level)
        artifact = ContextArtifact(
            module_name=module_name,
            level=level,
            body=body,
            token_count=TokenEstimator.estimate(body),
        )
        generation = self.cache.put(module_name, level, artifact)
        logger.debug(
            f"Cached {module_name}/{level.value} generation {generation} "
            f"(~{artifact.token_count} tokens)"
        )
        return CacheEntry(artifact=artifact, generation=generation)

    def _release(self, key: _Key, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def optimize_artifact(
        self, artifact: ContextArtifact, token_budget: int
    ) -> tuple[ContextArtifact, list[PassRecord]]:
        """A new, optimized artifact derived from `artifact`, plus the passes applied.

        The result is never admitted to the cache. When no pass reduces the
        body the input artifact is returned as is.
        """
        result = self.optimizer.optimize(artifact.body, token_budget)
        if not result.passes:
            return artifact, []
        logger.info(
            f"Optimized {artifact.module_name}/{artifact.level.value} from "
            f"{result.original_tokens} to {result.final_tokens} tokens "
            f"({result.reduction_percent:.1f}% reduction)"
        )
        optimized = ContextArtifact(
            module_name=artifact.module_name,
            level=artifact.level,
            body=result.body,
            token_count=result.final_tokens,
            optimized=True,
            reduction_percent=result.reduction_percent,
            original_tokens=result.original_tokens,
        )
        return optimized, result.passes

    def _level(self, level: DetailLevel | str | None) -> DetailLevel:
        if level is None:
            return self.config.default_level
        return DetailLevel.parse(level)


def build_engine(
    root: Path, config: ProjectConfig, persistent: bool = True
) -> tuple[ContextEngine, ContextStore | None]:
    """Wire registry, resolver, cache and engine for a project.

    With `persistent` the cache writes through to .modctx/contexts.db; the
    caller owns the returned store and must close it.
    """
    registry = ModuleRegistry(root, config)
    resolver = ModuleResolver(registry, config.indexer)
    store = ContextStore(get_modctx_dir(root) / STORE_DB_FILE) if persistent else None
    cache = ContextCache(backing=store)
    return ContextEngine(resolver, cache, config.context), store
