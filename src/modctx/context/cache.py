"""Context cache - one current artifact per (module, level).

Per-key lifecycle:

    EMPTY --put--> PRESENT --put--> PRESENT (generation + 1)
    PRESENT --invalidate--> EMPTY

Every mutation runs under a single lock, so a concurrent reader sees either
the previous artifact or the fully-formed new one. With a ``backing`` store
the cache writes through, hydrates misses from it and deletes from it on
invalidation.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from pydantic import ValidationError

from modctx.context.models import ContextArtifact, DetailLevel
from modctx.storage.store import ContextStore

logger = logging.getLogger("modctx.cache")

_KEY_PREFIX = "context::"


@dataclass(frozen=True)
class CacheEntry:
    """The current artifact for a key and the generation that admitted it."""

    artifact: ContextArtifact
    generation: int


def _store_key(module_name: str, level: DetailLevel) -> str:
    return f"{_KEY_PREFIX}{module_name}::{level.value}"


class ContextCache:
    """Keyed store of (module, level) -> ContextArtifact with explicit invalidation."""

    def __init__(self, backing: ContextStore | None = None) -> None:
        self.backing = backing
        self._entries: dict[tuple[str, DetailLevel], CacheEntry] = {}
        self._generations: dict[tuple[str, DetailLevel], int] = {}
        self._lock = threading.RLock()

    def get(self, module_name: str, level: DetailLevel | str) -> ContextArtifact | None:
        """Current artifact for the key, or None."""
        entry = self.entry(module_name, level)
        return entry.artifact if entry else None

    def entry(self, module_name: str, level: DetailLevel | str) -> CacheEntry | None:
        key = (module_name, DetailLevel.parse(level))
        with self._lock:
            entry = self._entries.get(key)
            if entry is None and self.backing is not None:
                entry = self._hydrate(key)
            return entry

    def put(
        self, module_name: str, level: DetailLevel | str, artifact: ContextArtifact
    ) -> int:
        """Admit `artifact` as the current one for the key, replacing any other.

        Returns the new generation number.
        """
        key = (module_name, DetailLevel.parse(level))
        if (artifact.module_name, artifact.level) != key:
            raise ValueError(
                f"Artifact for {artifact.module_name}/{artifact.level.value} "
                f"cannot be stored under {module_name}/{key[1].value}"
            )
        with self._lock:
            # Write the backing first: if it fails the in-memory entry is untouched
            if self.backing is not None:
                self.backing.put(_store_key(*key), artifact.model_dump_json())
            return self._admit(key, artifact)

    def invalidate(self, module_name: str, level: DetailLevel | str | None = None) -> int:
        """Drop one level, or every level when `level` is None, for a module.

        Returns how many entries were removed.
        """
        levels = list(DetailLevel) if level is None else [DetailLevel.parse(level)]
        removed = 0
        with self._lock:
            for lvl in levels:
                key = (module_name, lvl)
                present = self._entries.pop(key, None) is not None
                if self.backing is not None:
                    present = self.backing.delete(_store_key(*key)) or present
                if present:
                    removed += 1
        if removed:
            logger.debug(f"Invalidated {removed} context(s) for '{module_name}'")
        return removed

    def generation(self, module_name: str, level: DetailLevel | str) -> int:
        """Generation of the current artifact, 0 when the key is empty."""
        entry = self.entry(module_name, level)
        return entry.generation if entry else 0

    def keys(self) -> list[tuple[str, DetailLevel]]:
        """All keys currently present (in memory or in the backing store)."""
        with self._lock:
            keys = set(self._entries)
            if self.backing is not None:
                for raw in self.backing.keys(_KEY_PREFIX):
                    module_name, _, level = raw[len(_KEY_PREFIX):].rpartition("::")
                    try:
                        keys.add((module_name, DetailLevel.parse(level)))
                    except ValueError:
                        logger.warning(f"Ignoring unrecognized store key: {raw}")
        return sorted(keys, key=lambda k: (k[0], k[1].rank))

    def clear(self) -> int:
        """Drop every entry. Returns how many keys were present."""
        with self._lock:
            count = len(self.keys())
            self._entries.clear()
            if self.backing is not None:
                self.backing.clear()
        return count

    def __len__(self) -> int:
        return len(self.keys())

    # -------------------------------------------------------------------
    # Internals (caller holds the lock)
    # -------------------------------------------------------------------

    def _admit(self, key: tuple[str, DetailLevel], artifact: ContextArtifact) -> int:
        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        self._entries[key] = CacheEntry(artifact=artifact, generation=generation)
        return generation

    def _hydrate(self, key: tuple[str, DetailLevel]) -> CacheEntry | None:
        raw = self.backing.get(_store_key(*key))
        if raw is None:
            return None
        try:
            artifact = ContextArtifact.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable stored context {key[0]}/{key[1].value}: {e}")
            self.backing.delete(_store_key(*key))
            return None
        self._admit(key, artifact)
        return self._entries[key]
