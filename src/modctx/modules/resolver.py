"""Module resolution - the only I/O boundary of the context pipeline."""

from __future__ import annotations

import asyncio
import logging

from modctx.config import IndexerConfig
from modctx.exceptions import ModCtxError, ResolverUnavailable
from modctx.modules.models import FileEntry, ModuleDescriptor, detect_language
from modctx.modules.registry import ModuleRegistry
from modctx.modules.scanner import collect_files

logger = logging.getLogger("modctx.resolver")


class ModuleResolver:
    """Maps a module name to a ModuleDescriptor.

    Stateless apart from its collaborators: every call rescans the module's
    files. Caching is the context cache's job, not the resolver's.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        indexer: IndexerConfig | None = None,
    ) -> None:
        self.registry = registry
        self.indexer = indexer or IndexerConfig()

    async def resolve(self, name: str) -> ModuleDescriptor:
        """Resolve a module by name.

        Raises:
            ModuleNotFound: the module is not registered.
            ResolverUnavailable: the registry or file system failed.
        """
        return await asyncio.to_thread(self.resolve_sync, name)

    def resolve_sync(self, name: str) -> ModuleDescriptor:
        module = self.registry.get_module(name)
        root = self.registry.module_root(name)

        try:
            if not root.is_dir():
                raise ResolverUnavailable(
                    f"Root of module '{name}' is missing: {root}"
                )
            paths = collect_files(root, self.indexer)
            files = []
            for path in paths:
                rel_path = path.relative_to(root).as_posix()
                files.append(
                    FileEntry(
                        path=rel_path,
                        size_bytes=path.stat().st_size,
                        language=detect_language(rel_path),
                        content=path.read_text(encoding="utf-8", errors="replace"),
                    )
                )
        except ModCtxError:
            raise
        except OSError as e:
            raise ResolverUnavailable(f"Could not read module '{name}': {e}") from e

        logger.debug(f"Resolved module '{name}' with {len(files)} files")
        return ModuleDescriptor(
            name=module.name,
            root_path=module.path,
            description=module.description,
            files=tuple(files),
            dependencies=frozenset(module.dependencies),
        )
